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
Lifecycle resolution: from a declared version or URI to a validated lifecycle archive.
"""
import logging
import tarfile
import tomllib

import semver
from pydantic import BaseModel, Field, ValidationError

from ..DOWNLOADERS.blob import Blob
from ..DOWNLOADERS.downloader import Downloader
from ..errors import BpackError, ConfigError, InvalidLifecycleError
from ..MODELS.builder_config import LifecycleConfig

logger = logging.getLogger(__name__)

DEFAULT_LIFECYCLE_VERSION = "0.4.0"
DEFAULT_BUILDPACK_API_VERSION = "0.1"
DEFAULT_PLATFORM_API_VERSION = "0.1"

LIFECYCLE_URI_TEMPLATE = (
    "https://github.com/buildpack/lifecycle/releases/download/"
    "v{version}/lifecycle-v{version}+linux.x86-64.tgz"
)

REQUIRED_BINARIES = ["detector", "restorer", "analyzer", "builder", "exporter", "cacher", "launcher"]


def uri_from_lifecycle_version(version: semver.Version) -> str:
    return LIFECYCLE_URI_TEMPLATE.format(version=version)


def parse_lifecycle_version(version: str) -> semver.Version:
    """
    Parse a lifecycle version, accepting an optional leading 'v'.
    Missing minor or patch parts are zero, so '0.4' is 0.4.0.

    :raises ConfigError: If the version is not a semantic version.
    """
    try:
        return semver.Version.parse(version[1:] if version.startswith("v") else version,
                                    optional_minor_and_patch=True)
    except ValueError as e:
        raise ConfigError("lifecycle.version must be a valid semver") from e


class LifecycleInfo(BaseModel):
    version: str = DEFAULT_LIFECYCLE_VERSION


class LifecycleAPI(BaseModel):
    buildpack: str = DEFAULT_BUILDPACK_API_VERSION
    platform: str = DEFAULT_PLATFORM_API_VERSION


class LifecycleDescriptor(BaseModel):
    """
    Contents of lifecycle.toml. Archives without one are treated as the
    default lifecycle version with the oldest APIs.
    """
    info: LifecycleInfo = Field(default_factory=LifecycleInfo, alias="lifecycle")
    api: LifecycleAPI = Field(default_factory=LifecycleAPI)


class Lifecycle:
    """
    A fetched lifecycle archive and its descriptor.
    """

    def __init__(self, blob: Blob, descriptor: LifecycleDescriptor):
        self.blob = blob
        self.descriptor = descriptor

    @property
    def version(self) -> str:
        return self.descriptor.info.version

    @classmethod
    def from_blob(cls, blob: Blob) -> "Lifecycle":
        """
        Read the descriptor and check every required binary is present.

        :param blob: Fetched lifecycle archive.
        :return: The lifecycle.
        :raises InvalidLifecycleError: If the archive is unreadable or incomplete.
        """
        try:
            names = set(blob.names())
            data = blob.read_entry("lifecycle.toml")
        except (tarfile.TarError, OSError) as e:
            raise InvalidLifecycleError(f"reading lifecycle content: {e}") from e

        descriptor = LifecycleDescriptor()
        if data is not None:
            try:
                descriptor = LifecycleDescriptor.model_validate(tomllib.loads(data.decode()))
            except (tomllib.TOMLDecodeError, UnicodeDecodeError, ValidationError) as e:
                raise InvalidLifecycleError(f"decoding lifecycle.toml: {e}") from e

        for binary in REQUIRED_BINARIES:
            if f"lifecycle/{binary}" not in names:
                raise InvalidLifecycleError(f"missing required lifecycle binary '{binary}'")

        return cls(blob, descriptor)


class LifecycleResolver:
    """
    Turns a LifecycleConfig into a lifecycle ready to be placed in a builder.

    The default version is a constructor argument so that it can be pinned
    independently of the compiled-in constant.
    """

    def __init__(self, downloader: Downloader, default_version: str = DEFAULT_LIFECYCLE_VERSION):
        self.downloader = downloader
        self.default_version = default_version

    def resolve_uri(self, config: LifecycleConfig) -> str:
        """
        Work out where to download the lifecycle from.

        Args:
            config: Declared lifecycle version or URI

        Returns:
            The download URI

        Raises:
            ConfigError: If both version and URI are set, or the version is not semver
        """
        if config.version and config.uri:
            raise ConfigError("lifecycle can only declare version or uri, not both")

        if config.uri:
            return config.uri

        version = parse_lifecycle_version(config.version or self.default_version)
        return uri_from_lifecycle_version(version)

    def fetch(self, config: LifecycleConfig) -> Lifecycle:
        """
        Resolve, download and validate the lifecycle.

        Raises:
            ConfigError: If the declaration is contradictory
            DownloadError: On transport failure
            InvalidLifecycleError: If the archive is not a usable lifecycle
        """
        uri = self.resolve_uri(config)
        logger.debug("Downloading lifecycle from '%s'", uri)

        try:
            blob = self.downloader.download(uri)
        except BpackError as e:
            raise e.wrap("downloading lifecycle")

        try:
            return Lifecycle.from_blob(blob)
        except InvalidLifecycleError as e:
            raise e.wrap("invalid lifecycle")
