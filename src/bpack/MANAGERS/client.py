# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Client facade.
Wires the image fetcher, downloader and client configuration into the
builder and rebase engines.
"""

from typing import Optional

from ..BUILDERS.create_builder import BuilderAssembler
from ..BUILDERS.inspect_builder import inspect_builder
from ..DOWNLOADERS.downloader import Downloader
from ..MODELS.client_config import ClientConfig
from ..MODELS.options import BuilderInfo, CreateBuilderOptions, RebaseOptions
from ..PARSERS.client_config_parser import bpack_home, read_config
from ..REBASE.rebase_manager import RebaseManager
from ..REBASE.rebaser import Rebaser
from ..REGISTRY.image import ImageFetcher
from ..REGISTRY.image_fetcher import DefaultImageFetcher
from ..REGISTRY.local_store import LocalImageStore
from ..REGISTRY.registry_client import RegistryClient


class Client:
    """
    Entry point for the operations exposed to the CLI.
    """

    def __init__(
        self,
        fetcher: Optional[ImageFetcher] = None,
        downloader: Optional[Downloader] = None,
        config: Optional[ClientConfig] = None,
        rebaser: Optional[Rebaser] = None,
    ):
        """
        Initialize the client. Collaborators that are not given are built
        from $BPACK_HOME.

        Args:
            fetcher: Image source for the daemon and registry
            downloader: Fetches buildpacks and lifecycles
            config: Client configuration. Defaults to $BPACK_HOME/config.yml
            rebaser: Layer swapping primitive used by rebase
        """
        home = bpack_home()
        self.config = config if config is not None else read_config()
        self.fetcher = fetcher or DefaultImageFetcher(LocalImageStore(str(home / "images")), RegistryClient())
        self.downloader = downloader or Downloader(str(home / "download-cache"))
        self.rebaser = rebaser

    def create_builder(self, opts: CreateBuilderOptions) -> str:
        return BuilderAssembler(self.fetcher, self.downloader).create_builder(opts)

    def inspect_builder(self, name: str, daemon: bool) -> Optional[BuilderInfo]:
        return inspect_builder(self.fetcher, name, daemon)

    def rebase(self, opts: RebaseOptions) -> str:
        """
        Rebase an application image.

        Mirrors from the client configuration apply to any run image the
        options do not configure mirrors for.
        """
        mirrors = self.config.mirrors()
        mirrors.update(opts.additional_mirrors)
        opts = opts.model_copy(update={"additional_mirrors": mirrors})
        return RebaseManager(self.fetcher, self.rebaser).rebase(opts)
