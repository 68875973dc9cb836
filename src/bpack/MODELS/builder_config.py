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
Models for the builder configuration, equivalent to a parsed builder.toml.
"""
from typing import List
from pydantic import BaseModel, ConfigDict, Field


class Stack(BaseModel):
    """
    A build image and a run image sharing a declared stack ID.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = ""
    build_image: str = Field("", alias="build-image")
    run_image: str = Field("", alias="run-image")
    run_image_mirrors: List[str] = Field(default_factory=list, alias="run-image-mirrors")


class BuildpackRef(BaseModel):
    """
    Where to fetch a buildpack from, and the identity it is expected to declare.
    """
    model_config = ConfigDict(frozen=True)

    uri: str
    id: str = ""
    version: str = ""


class BuildpackGroupEntry(BaseModel):
    """
    A single buildpack within an order group.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    version: str = ""
    optional: bool = False


class OrderEntry(BaseModel):
    """
    A group of buildpacks detected together.
    """
    model_config = ConfigDict(frozen=True)

    group: List[BuildpackGroupEntry] = Field(default_factory=list)


class LifecycleConfig(BaseModel):
    """
    Either a lifecycle version to download or an explicit URI; never both.
    """
    model_config = ConfigDict(frozen=True)

    version: str = ""
    uri: str = ""


class BuilderConfig(BaseModel):
    """
    The complete declarative input for assembling a builder image.
    """
    model_config = ConfigDict(frozen=True)

    description: str = ""
    stack: Stack = Field(default_factory=Stack)
    buildpacks: List[BuildpackRef] = Field(default_factory=list)
    order: List[OrderEntry] = Field(default_factory=list)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
