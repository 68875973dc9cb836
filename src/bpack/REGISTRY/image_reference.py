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
Image reference parsing and handling.
Parses references like 'some/run', 'example.com/some/run:v1' or
'localhost:5000/app@sha256:...'.
"""

import re
from typing import Optional
from dataclasses import dataclass

_COMPONENT = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG = re.compile(r"^[\w][\w.-]{0,127}$")


@dataclass(frozen=True)
class ImageReference:
    """
    Parsed image reference.

    Examples:
        - nginx -> docker.io/library/nginx:latest
        - some/run -> docker.io/some/run:latest (domain "")
        - example.com/some/run -> example.com/some/run:latest (domain "example.com")
        - gcr.io/project/image@sha256:abc123... -> gcr.io/project/image@sha256:abc123...
    """

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    DEFAULT_REGISTRY = "docker.io"
    DEFAULT_TAG = "latest"
    DOCKER_HUB_ALIASES = ("docker.io", "index.docker.io", "registry-1.docker.io")

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        """
        Parse an image reference string.

        Args:
            reference: Image reference string (e.g., 'some/run', 'example.com/some/run:v1')

        Returns:
            Parsed ImageReference object.

        Raises:
            ValueError: If the reference is empty or malformed.
        """
        if not reference:
            raise ValueError("Empty image reference")
        original = reference

        digest = None
        if "@" in reference:
            reference, digest = reference.rsplit("@", 1)
            if not digest.startswith("sha256:"):
                raise ValueError(f"Invalid digest in image reference '{original}'")

        tag = None
        last_colon = reference.rfind(":")
        if last_colon != -1:
            after_colon = reference[last_colon + 1 :]
            # 'localhost:5000/app' has a port, not a tag
            if "/" not in after_colon:
                tag = after_colon
                reference = reference[:last_colon]
                if not _TAG.match(tag):
                    raise ValueError(f"Invalid tag in image reference '{original}'")

        parts = reference.split("/")
        first_part = parts[0]
        if len(parts) > 1 and ("." in first_part or ":" in first_part or first_part == "localhost"):
            registry = first_part
            parts = parts[1:]
        else:
            registry = cls.DEFAULT_REGISTRY

        if registry in cls.DOCKER_HUB_ALIASES:
            registry = cls.DEFAULT_REGISTRY
            if len(parts) == 1:
                # official images live under library/
                parts = ["library"] + parts

        for part in parts:
            if not _COMPONENT.match(part):
                raise ValueError(f"Invalid repository name in image reference '{original}'")

        if not tag and not digest:
            tag = cls.DEFAULT_TAG

        return cls(registry=registry, repository="/".join(parts), tag=tag, digest=digest)

    @property
    def domain(self) -> str:
        """Registry host, or '' for the default public registry."""
        if self.registry == self.DEFAULT_REGISTRY:
            return ""
        return self.registry

    @property
    def full_name(self) -> str:
        """Get full image name with registry."""
        name = f"{self.registry}/{self.repository}"
        if self.digest:
            return f"{name}@{self.digest}"
        if self.tag:
            return f"{name}:{self.tag}"
        return name

    @property
    def context(self) -> str:
        """Registry and repository without tag or digest."""
        return f"{self.registry}/{self.repository}"

    @property
    def short_name(self) -> str:
        """Get short image name (without registry if default)."""
        if self.registry == self.DEFAULT_REGISTRY:
            repo = self.repository
            if repo.startswith("library/"):
                repo = repo[8:]
            if self.digest:
                return f"{repo}@{self.digest}"
            if self.tag:
                return f"{repo}:{self.tag}"
            return repo
        return self.full_name

    @property
    def registry_url(self) -> str:
        """Get the registry URL for API calls."""
        if self.registry == self.DEFAULT_REGISTRY:
            return "https://registry-1.docker.io"
        if self.registry.startswith("localhost") or self.registry.startswith("127.0.0.1"):
            return f"http://{self.registry}"
        return f"https://{self.registry}"

    def with_digest(self, digest: str) -> "ImageReference":
        return ImageReference(registry=self.registry, repository=self.repository, digest=digest)

    def __str__(self) -> str:
        return self.short_name

    def __repr__(self) -> str:
        return f"ImageReference({self.full_name})"


def domain_of(reference: str) -> str:
    """
    Registry domain of a reference string.

    Raises:
        ValueError: If the reference cannot be parsed.
    """
    return ImageReference.parse(reference).domain
