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
Assembling a builder image from a builder configuration.
"""
import logging
from typing import Iterable, List

from ..DOWNLOADERS.downloader import Downloader
from ..errors import BpackError, ConfigError, NotFoundError, StackMismatchError
from ..MODELS.builder_config import BuilderConfig
from ..MODELS.image_metadata import STACK_ID_LABEL, read_mixins
from ..MODELS.options import CreateBuilderOptions
from ..REGISTRY.image import Image, ImageFetcher
from .builder import Builder
from .buildpack import BuildpackAcquirer, ensure_buildpack_support
from .lifecycle import DEFAULT_LIFECYCLE_VERSION, LifecycleResolver

logger = logging.getLogger(__name__)


def validate_builder_config(config: BuilderConfig) -> None:
    """
    Check the fields every builder config must have.

    :raises ConfigError: Naming the first missing field.
    """
    if not config.stack.id:
        raise ConfigError("stack.id is required")
    if not config.stack.build_image:
        raise ConfigError("stack.build-image is required")
    if not config.stack.run_image:
        raise ConfigError("stack.run-image is required")


def merge_mixins(build_mixins: Iterable[str], run_mixins: Iterable[str]) -> List[str]:
    """Set union of two mixin lists. The order of the result is not significant."""
    return list(set(build_mixins) | set(run_mixins))


class BuilderAssembler:
    """
    Creates builder images.

    Every check and download happens before the single save at the end, so a
    failed assembly never leaves a partial builder behind.
    """

    def __init__(self, fetcher: ImageFetcher, downloader: Downloader,
                 default_lifecycle_version: str = DEFAULT_LIFECYCLE_VERSION):
        self.fetcher = fetcher
        self.acquirer = BuildpackAcquirer(downloader)
        self.lifecycle_resolver = LifecycleResolver(downloader, default_lifecycle_version)

    def validate_run_image_config(self, opts: CreateBuilderOptions) -> None:
        """
        Check that every accessible run image and mirror is on the configured stack.

        Inaccessible images are only warned about. When not publishing the
        daemon is consulted first and the registry only if the daemon does
        not have the image.

        Raises:
            StackMismatchError: If an accessible run image declares another stack
            ImageSourceError: If looking up an image fails for any reason but absence
        """
        stack = opts.builder_config.stack
        run_images: List[Image] = []

        for name in [stack.run_image] + list(stack.run_image_mirrors):
            if not opts.publish:
                try:
                    run_images.append(self.fetcher.fetch(name, daemon=True, pull=False))
                    continue
                except NotFoundError:
                    pass

            try:
                run_images.append(self.fetcher.fetch(name, daemon=False, pull=False))
            except NotFoundError:
                logger.warning("run image '%s' is not accessible", name)

        for image in run_images:
            stack_id = image.label(STACK_ID_LABEL)
            if stack_id != stack.id:
                raise StackMismatchError(stack.id, stack_id, f"run image '{image.name()}'")

    def create_builder(self, opts: CreateBuilderOptions) -> str:
        """
        Assemble and save a builder image.

        Args:
            opts: Builder name, configuration and fetch policy

        Returns:
            Identifier of the saved builder image

        Raises:
            ConfigError: If the configuration is incomplete or contradictory
            StackMismatchError: If the build or run image is on another stack
            DownloadError: If a buildpack or the lifecycle cannot be fetched
            InvalidBuildpackError: If a buildpack is malformed
            IdentityMismatchError: If a buildpack is not the one the config names
            UnsupportedBuildpackSourceError: If a buildpack URI cannot be fetched here
            ImageSourceError: If an image cannot be fetched or saved
        """
        config = opts.builder_config
        try:
            validate_builder_config(config)
        except ConfigError as e:
            raise e.wrap("invalid builder config")

        self.validate_run_image_config(opts)

        daemon, pull = not opts.publish, not opts.no_pull
        build_image = self.fetcher.fetch(config.stack.build_image, daemon=daemon, pull=pull)
        try:
            run_image = self.fetcher.fetch(config.stack.run_image, daemon=daemon, pull=pull)
        except BpackError as e:
            raise e.wrap(f"fetching run image '{config.stack.run_image}'")

        mixins = merge_mixins(read_mixins(build_image), read_mixins(run_image))

        logger.debug("Creating builder '%s' from build-image '%s'", opts.builder_name, build_image.name())
        try:
            builder = Builder.new(build_image, opts.builder_name)
        except BpackError as e:
            raise e.wrap("invalid build-image")

        builder.set_description(config.description)

        if builder.stack_id != config.stack.id:
            raise StackMismatchError(config.stack.id, builder.stack_id, "build image")

        builder.set_mixins(mixins)

        try:
            lifecycle = self.lifecycle_resolver.fetch(config.lifecycle)
        except BpackError as e:
            raise e.wrap("fetch lifecycle")
        builder.set_lifecycle(lifecycle)

        for ref in config.buildpacks:
            ensure_buildpack_support(ref.uri)
            builder.add_buildpack(self.acquirer.acquire(ref.uri, ref.id, ref.version))

        builder.set_order(config.order)
        builder.set_stack(config.stack)

        return builder.save()
