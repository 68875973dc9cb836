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
Models for the per-user client configuration.
"""
from typing import Dict, List
from pydantic import BaseModel, Field


class RunImageConfig(BaseModel):
    """
    Locally configured mirrors for a primary run image.
    """
    image: str
    mirrors: List[str] = []


class ClientConfig(BaseModel):
    """
    Settings persisted between invocations, e.g. ~/.bpack/config.yml.
    """
    default_builder_image: str = ""
    run_images: List[RunImageConfig] = Field(default_factory=list)

    def mirrors(self) -> Dict[str, List[str]]:
        """
        Returns the configured mirrors keyed by primary run image name.
        """
        return {ri.image: list(ri.mirrors) for ri in self.run_images}

    def set_run_image_mirrors(self, image: str, mirrors: List[str]) -> None:
        """
        Replaces the mirrors configured for a run image, adding it if needed.

        :param image: Primary run image name.
        :param mirrors: Mirrors in order of preference.
        """
        for ri in self.run_images:
            if ri.image == image:
                ri.mirrors = list(mirrors)
                return
        self.run_images.append(RunImageConfig(image=image, mirrors=list(mirrors)))

    def set_default_builder(self, image: str) -> None:
        self.default_builder_image = image
