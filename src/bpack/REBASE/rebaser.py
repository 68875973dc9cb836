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
The primitive that swaps the base layers of an application image.
"""
from abc import ABC, abstractmethod

from ..MODELS.image_metadata import LIFECYCLE_METADATA_LABEL, LayersMetadata, read_label
from ..REGISTRY.image import Image


class Rebaser(ABC):
    """
    Replaces the run image an application image is based on.
    """

    @abstractmethod
    def rebase(self, app_image: Image, new_base: Image) -> None:
        """
        Swap the base of app_image for new_base, in memory.

        Raises:
            MetadataError: If the current base cannot be determined
            ImageSourceError: If the layers cannot be swapped
        """


class LayerRebaser(Rebaser):
    """
    Rebases using the old base top layer recorded in the lifecycle metadata.
    """

    def rebase(self, app_image: Image, new_base: Image) -> None:
        metadata, _ = read_label(app_image, LIFECYCLE_METADATA_LABEL, LayersMetadata)
        old_top_layer = metadata.run_image.top_layer if metadata else ""
        app_image.rebase(old_top_layer, new_base)
