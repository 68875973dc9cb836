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
Buildpacks: parsing their buildpack.toml and fetching them by URI.
"""
import logging
import os
import tarfile
import tomllib
from typing import List

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..DOWNLOADERS.blob import Blob
from ..DOWNLOADERS.downloader import Downloader, LocalPathSource, source_for
from ..errors import (
    IdentityMismatchError,
    InvalidBuildpackError,
    UnsupportedBuildpackSourceError,
    UnsupportedSourceError,
)
from ..MODELS.builder_config import OrderEntry

logger = logging.getLogger(__name__)

DEFAULT_BUILDPACK_API_VERSION = "0.1"

IS_WINDOWS = os.name == "nt"


class BuildpackInfo(BaseModel):
    id: str = ""
    version: str = ""
    name: str = ""


class BuildpackStack(BaseModel):
    id: str
    mixins: List[str] = []


class BuildpackDescriptor(BaseModel):
    """
    Contents of a buildpack.toml.
    """
    model_config = ConfigDict(populate_by_name=True)

    api: str = DEFAULT_BUILDPACK_API_VERSION
    info: BuildpackInfo = Field(default_factory=BuildpackInfo, alias="buildpack")
    stacks: List[BuildpackStack] = []
    order: List[OrderEntry] = []


class Buildpack:
    """
    A fetched buildpack: its content plus the identity it declares.
    """

    def __init__(self, blob: Blob, descriptor: BuildpackDescriptor):
        self.blob = blob
        self.descriptor = descriptor

    @property
    def id(self) -> str:
        return self.descriptor.info.id

    @property
    def version(self) -> str:
        return self.descriptor.info.version

    @classmethod
    def from_blob(cls, blob: Blob) -> "Buildpack":
        """
        Read and validate the buildpack.toml at the root of the content.

        :param blob: Fetched buildpack content.
        :return: The buildpack.
        :raises InvalidBuildpackError: If the content is not a well-formed buildpack.
        """
        try:
            data = blob.read_entry("buildpack.toml")
        except (tarfile.TarError, OSError) as e:
            raise InvalidBuildpackError(f"reading buildpack content: {e}") from e
        if data is None:
            raise InvalidBuildpackError("could not find entry path 'buildpack.toml'")

        try:
            descriptor = BuildpackDescriptor.model_validate(tomllib.loads(data.decode()))
        except (tomllib.TOMLDecodeError, UnicodeDecodeError, ValidationError) as e:
            raise InvalidBuildpackError(f"reading buildpack.toml: {e}") from e

        validate_descriptor(descriptor)
        return cls(blob, descriptor)


def validate_descriptor(descriptor: BuildpackDescriptor) -> None:
    info = descriptor.info
    if not info.id:
        raise InvalidBuildpackError("buildpack.id is required")
    if not info.version:
        raise InvalidBuildpackError(f"buildpack '{info.id}': buildpack.version is required")
    if descriptor.stacks and descriptor.order:
        raise InvalidBuildpackError(f"buildpack '{info.id}': cannot have both stacks and an order defined")
    if not descriptor.stacks and not descriptor.order:
        raise InvalidBuildpackError(f"buildpack '{info.id}': must have either stacks or an order defined")


def validate_buildpack(buildpack: Buildpack, source: str, expected_id: str, expected_version: str) -> None:
    """
    Check a fetched buildpack against the identity the builder config expects.

    Empty expectations are not checked.
    """
    if expected_id and buildpack.id != expected_id:
        raise IdentityMismatchError(source, "ID", buildpack.id, expected_id)
    if expected_version and buildpack.version != expected_version:
        raise IdentityMismatchError(source, "version", buildpack.version, expected_version)


def ensure_buildpack_support(uri: str) -> None:
    """
    Fail fast on buildpack URIs that cannot be fetched on this platform.

    Raises:
        UnsupportedBuildpackSourceError: For unknown schemes, or non-directory
            buildpacks on Windows
    """
    try:
        source = source_for(uri)
    except UnsupportedSourceError as e:
        raise UnsupportedBuildpackSourceError(uri, e.reason) from e

    if IS_WINDOWS and not (isinstance(source, LocalPathSource) and os.path.isdir(source.path)):
        raise UnsupportedBuildpackSourceError(uri, "Windows only supports directory-based buildpacks")


class BuildpackAcquirer:
    """
    Downloads buildpacks and checks that they are the ones the config asked for.
    """

    def __init__(self, downloader: Downloader):
        self.downloader = downloader

    def acquire(self, uri: str, expected_id: str = "", expected_version: str = "") -> Buildpack:
        """
        Download and validate a buildpack.

        Args:
            uri: Where to fetch the buildpack from
            expected_id: ID the buildpack must declare, if non-empty
            expected_version: Version the buildpack must declare, if non-empty

        Raises:
            DownloadError: On transport failure
            InvalidBuildpackError: If the content is not a well-formed buildpack
            IdentityMismatchError: If the declared ID or version differ from the expected ones
        """
        blob = self.downloader.download(uri)

        try:
            buildpack = Buildpack.from_blob(blob)
        except InvalidBuildpackError as e:
            raise e.wrap(f"creating buildpack from '{uri}'")

        validate_buildpack(buildpack, uri, expected_id, expected_version)
        logger.debug("Fetched buildpack '%s@%s' from '%s'", buildpack.id, buildpack.version, uri)
        return buildpack
