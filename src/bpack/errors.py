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

"""Typed exceptions for bpack.

Every failure raised by the builder and rebase engines derives from
BpackError so that callers can tell expected, operator-facing failures
apart from programming errors.
"""


class BpackError(RuntimeError):
    """Base class for all bpack errors."""

    def wrap(self, context: str) -> "BpackError":
        """Prefix the message with context, keeping the error kind.

        Returns the same instance so it can be re-raised directly:
        ``raise err.wrap("fetch lifecycle")``.
        """
        self.args = (f"{context}: {self}",)
        return self


class SoftError(BpackError):
    """Failure whose diagnostics were already reported to the operator."""

    def __init__(self, message: str = ""):
        super().__init__(message)


# Configuration Errors
class ConfigError(BpackError):
    """Malformed or contradictory configuration."""
    pass


# Transport Errors
class DownloadError(BpackError):
    """Fetching a buildpack or lifecycle archive failed."""

    def __init__(self, uri: str, reason: str):
        self.uri = uri
        self.reason = reason
        super().__init__(f"downloading '{uri}': {reason}")


class ImageSourceError(BpackError):
    """Image could not be read from or written to the daemon or registry."""
    pass


class NotFoundError(ImageSourceError):
    """Image does not exist in the place it was looked up."""

    def __init__(self, name: str, where: str = "registry"):
        self.name = name
        self.where = where
        if where == "daemon":
            super().__init__(f"image '{name}' does not exist on the daemon: not found")
        else:
            super().__init__(f"image '{name}' does not exist in {where}: not found")


# Compatibility Errors
class StackMismatchError(BpackError):
    """Declared stack IDs disagree."""

    def __init__(self, expected: str, actual: str, source: str, expected_source: str = "builder config"):
        self.expected = expected
        self.actual = actual
        self.source = source
        super().__init__(
            f"stack '{expected}' from {expected_source} is incompatible with "
            f"stack '{actual}' from {source}"
        )


class IdentityMismatchError(BpackError):
    """Fetched buildpack does not carry the ID or version the config expects."""

    def __init__(self, uri: str, field: str, actual: str, expected: str):
        self.uri = uri
        self.field = field
        self.actual = actual
        self.expected = expected
        super().__init__(
            f"buildpack from URI '{uri}' has {field} '{actual}' which does not "
            f"match {field} '{expected}' from builder config"
        )


# Artifact Errors
class InvalidBuildpackError(BpackError):
    """Content is not a well-formed buildpack."""
    pass


class InvalidLifecycleError(BpackError):
    """Content is not a well-formed lifecycle archive."""
    pass


class InvalidBuilderError(BpackError):
    """Image cannot be used as, or is not, a builder."""
    pass


class MetadataError(BpackError):
    """A metadata label holds content that cannot be decoded."""
    pass


class UnsupportedSourceError(BpackError):
    """URI uses a source kind that cannot be fetched."""

    def __init__(self, uri: str, reason: str):
        self.uri = uri
        self.reason = reason
        super().__init__(f"'{uri}': {reason}")


class UnsupportedBuildpackSourceError(UnsupportedSourceError):
    """Buildpack URI uses a source kind that cannot be fetched."""

    def __init__(self, uri: str, reason: str):
        super().__init__(uri, reason)
        self.args = (f"buildpack '{uri}': {reason}",)


# Rebase Errors
class MissingRunImageError(BpackError):
    """No run image could be determined for a rebase."""

    def __init__(self):
        super().__init__("run image must be specified")
