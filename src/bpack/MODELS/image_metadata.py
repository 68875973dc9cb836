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
Schemas for the JSON metadata stored in image labels.

Labels are the serialization boundary: they are decoded into these models
as soon as they are read and encoded only when written back, so the rest
of the code never handles raw label strings.
"""
from typing import Annotated, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter, ValidationError

from ..errors import MetadataError

STACK_ID_LABEL = "io.buildpacks.stack.id"
MIXINS_LABEL = "io.buildpacks.stack.mixins"
BUILDER_METADATA_LABEL = "io.buildpacks.builder.metadata"
LIFECYCLE_METADATA_LABEL = "io.buildpacks.lifecycle.metadata"

M = TypeVar("M", bound=BaseModel)

# the lifecycle writes empty lists as null
_EMPTY_IF_NULL = BeforeValidator(lambda value: [] if value is None else value)

_MIXINS = TypeAdapter(Annotated[List[str], _EMPTY_IF_NULL])


class RunImageMetadata(BaseModel):
    """Primary run image of a stack and its mirrors."""
    model_config = ConfigDict(extra="allow")

    image: str = ""
    mirrors: Annotated[List[str], _EMPTY_IF_NULL] = Field(default_factory=list)


class StackMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    run_image: RunImageMetadata = Field(default_factory=RunImageMetadata, alias="runImage")


class RunImageReference(BaseModel):
    """The run image an app image is currently based on."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    top_layer: str = Field("", alias="topLayer")
    reference: str = ""


class LayersMetadata(BaseModel):
    """
    Contents of the lifecycle metadata label on an application image.

    Only the fields touched by a rebase are modelled; everything else the
    lifecycle wrote is carried along untouched.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    stack: StackMetadata = Field(default_factory=StackMetadata)
    run_image: RunImageReference = Field(default_factory=RunImageReference, alias="runImage")


class BuildpackMetadata(BaseModel):
    id: str
    version: str
    latest: bool = False


class GroupBuildpack(BaseModel):
    id: str
    version: str
    optional: bool = False


class GroupMetadata(BaseModel):
    buildpacks: Annotated[List[GroupBuildpack], _EMPTY_IF_NULL] = Field(default_factory=list)


class LifecycleAPIs(BaseModel):
    buildpack: str = ""
    platform: str = ""


class LifecycleMetadata(BaseModel):
    version: str = ""
    api: LifecycleAPIs = Field(default_factory=LifecycleAPIs)


class CreatorMetadata(BaseModel):
    name: str = ""
    version: str = ""


class BuilderMetadata(BaseModel):
    """Contents of the builder metadata label."""
    model_config = ConfigDict(populate_by_name=True)

    description: str = ""
    stack: StackMetadata = Field(default_factory=StackMetadata)
    buildpacks: Annotated[List[BuildpackMetadata], _EMPTY_IF_NULL] = Field(default_factory=list)
    groups: Annotated[List[GroupMetadata], _EMPTY_IF_NULL] = Field(default_factory=list)
    lifecycle: LifecycleMetadata = Field(default_factory=LifecycleMetadata)
    created_by: CreatorMetadata = Field(default_factory=CreatorMetadata, alias="createdBy")


def read_label(image, key: str, model: Type[M]) -> Tuple[Optional[M], bool]:
    """
    Decode a JSON label into a model.

    Args:
        image: Image to read the label from
        key: Label key
        model: Model class the label decodes to

    Returns:
        (decoded model, True) if the label is present, (None, False) if it is
        absent or empty.
    """
    data = image.label(key)
    if not data:
        return None, False
    try:
        return model.model_validate_json(data), True
    except ValidationError as e:
        raise MetadataError(f"decoding label '{key}' of image '{image.name()}': {e}") from e


def write_label(image, key: str, metadata: BaseModel) -> None:
    """Encode a model as compact JSON and store it as a label."""
    image.set_label(key, metadata.model_dump_json(by_alias=True))


def read_mixins(image) -> List[str]:
    """Read the mixins label; an absent or empty label is an empty list."""
    data = image.label(MIXINS_LABEL)
    if not data:
        return []
    try:
        return _MIXINS.validate_json(data)
    except ValidationError as e:
        raise MetadataError(f"decoding label '{MIXINS_LABEL}' of image '{image.name()}': {e}") from e


def write_mixins(image, mixins: List[str]) -> None:
    image.set_label(MIXINS_LABEL, _MIXINS.dump_json(mixins).decode())
