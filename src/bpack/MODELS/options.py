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
Options accepted by the builder and rebase operations, and what they report back.
"""
from typing import Dict, List
from pydantic import BaseModel, Field

from .builder_config import BuilderConfig
from .image_metadata import BuildpackMetadata, CreatorMetadata, GroupMetadata, LifecycleMetadata


class CreateBuilderOptions(BaseModel):
    """
    Inputs for assembling a builder image.
    """
    builder_name: str
    builder_config: BuilderConfig
    publish: bool = False
    no_pull: bool = False


class RebaseOptions(BaseModel):
    """
    Inputs for swapping the run image of an application image.
    """
    repo_name: str
    run_image: str = ""
    additional_mirrors: Dict[str, List[str]] = Field(default_factory=dict)
    publish: bool = False
    skip_pull: bool = False


class BuilderInfo(BaseModel):
    """
    What inspecting an existing builder image reports.
    """
    description: str = ""
    stack: str = ""
    run_image: str = ""
    run_image_mirrors: List[str] = []
    buildpacks: List[BuildpackMetadata] = []
    groups: List[GroupMetadata] = []
    lifecycle: LifecycleMetadata = Field(default_factory=LifecycleMetadata)
    created_by: CreatorMetadata = Field(default_factory=CreatorMetadata)
