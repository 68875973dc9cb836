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
Image fetching policy across the local store and remote registries.
"""
import logging

from ..errors import NotFoundError
from .image import Image, ImageFetcher
from .local_store import LocalImageStore
from .registry_client import RegistryClient

logger = logging.getLogger(__name__)


class DefaultImageFetcher(ImageFetcher):
    """
    Fetches images from the local store ("daemon") or a registry.
    """

    def __init__(self, store: LocalImageStore, registry: RegistryClient):
        """
        :param store: Local image store standing in for the daemon.
        :param registry: Client for remote registries.
        """
        self.store = store
        self.registry = registry

    def fetch(self, name: str, daemon: bool, pull: bool) -> Image:
        if not daemon:
            return self.registry.fetch_image(name)

        if pull:
            try:
                self.registry.pull_image(name, self.store)
            except NotFoundError:
                logger.debug("Image '%s' not found in registry, using local copy", name)

        return self.store.get(name)

