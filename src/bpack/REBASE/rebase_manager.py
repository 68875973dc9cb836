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
Rebase orchestration.
Fetches an application image and its new run image, swaps the base layers
and rewrites the lifecycle metadata to point at the new base.
"""

import logging
from typing import Optional

from ..errors import BpackError, StackMismatchError
from ..MODELS.image_metadata import (
    LIFECYCLE_METADATA_LABEL,
    STACK_ID_LABEL,
    LayersMetadata,
    RunImageReference,
    read_label,
    write_label,
)
from ..MODELS.options import RebaseOptions
from ..REGISTRY.image import Image, ImageFetcher
from .rebaser import LayerRebaser, Rebaser
from .run_image_resolver import select_run_image

logger = logging.getLogger(__name__)


class RebaseManager:
    """
    Rebases application images onto their current run image.
    """

    def __init__(self, fetcher: ImageFetcher, rebaser: Optional[Rebaser] = None):
        """
        Initialize the rebase manager.

        Args:
            fetcher: Source of application and run images
            rebaser: Layer swapping primitive. Defaults to LayerRebaser
        """
        self.fetcher = fetcher
        self.rebaser = rebaser or LayerRebaser()

    def _fetch(self, name: str, opts: RebaseOptions) -> Image:
        # publishing reads the registry; otherwise the daemon, refreshed unless skip_pull
        return self.fetcher.fetch(name, daemon=not opts.publish, pull=not opts.skip_pull)

    def rebase(self, opts: RebaseOptions) -> str:
        """
        Rebase an application image.

        Nothing is saved unless every step succeeds.

        Args:
            opts: Application image, run image override, mirrors and fetch policy

        Returns:
            Identifier of the saved application image

        Raises:
            MissingRunImageError: If no run image can be determined
            StackMismatchError: If the new run image is on another stack
            MetadataError: If the lifecycle metadata label cannot be decoded
            ImageSourceError: If an image cannot be fetched, rebased or saved
        """
        app_image = self._fetch(opts.repo_name, opts)

        metadata, _ = read_label(app_image, LIFECYCLE_METADATA_LABEL, LayersMetadata)
        if metadata is None:
            metadata = LayersMetadata()

        selection = select_run_image(
            opts.repo_name,
            metadata.stack.run_image.image,
            metadata.stack.run_image.mirrors,
            opts.run_image,
            opts.additional_mirrors,
        )
        logger.debug("Selected run image '%s' from %s", selection.reference, selection.source.value)

        try:
            base_image = self._fetch(selection.reference, opts)
        except BpackError as e:
            raise e.wrap(f"fetching run image '{selection.reference}'")

        app_stack = app_image.label(STACK_ID_LABEL)
        run_stack = base_image.label(STACK_ID_LABEL)
        if app_stack and run_stack != app_stack:
            raise StackMismatchError(
                app_stack, run_stack, f"run image '{selection.reference}'",
                expected_source=f"app image '{opts.repo_name}'",
            )

        logger.info("Rebasing '%s' on run image '%s'", app_image.name(), base_image.name())
        self.rebaser.rebase(app_image, base_image)

        metadata.run_image = RunImageReference(
            top_layer=base_image.top_layer(),
            reference=base_image.identifier(),
        )
        write_label(app_image, LIFECYCLE_METADATA_LABEL, metadata)

        identifier = app_image.save()
        logger.info("Rebased image '%s' (%s)", app_image.name(), identifier)
        return identifier
