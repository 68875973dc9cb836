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
Interfaces for in-memory image handles and the sources that produce them.

An Image is mutated in memory and only becomes visible to anyone else when
save() is called.
"""
from abc import ABC, abstractmethod


class Image(ABC):
    """
    A handle on an image held by the daemon or a registry.
    """

    @abstractmethod
    def name(self) -> str:
        """Name the image was fetched or created under."""

    @abstractmethod
    def rename(self, name: str) -> None:
        """Save under a different name from now on."""

    @abstractmethod
    def label(self, key: str) -> str:
        """Value of a label, or '' if it is not set."""

    @abstractmethod
    def set_label(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def env(self, key: str) -> str:
        """Value of an environment variable, or '' if it is not set."""

    @abstractmethod
    def set_env(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def base(self) -> str:
        """Name of the image this one was last rebased onto, if known."""

    @abstractmethod
    def top_layer(self) -> str:
        """Diff ID of the topmost layer."""

    @abstractmethod
    def identifier(self) -> str:
        """Content-addressable reference of the image as last fetched or saved."""

    @abstractmethod
    def add_layer(self, path: str) -> None:
        """Append an uncompressed tar file as a new top layer."""

    @abstractmethod
    def rebase(self, base_top_layer: str, new_base: "Image") -> None:
        """
        Replace every layer up to and including base_top_layer with the
        layers of new_base.
        """

    @abstractmethod
    def save(self) -> str:
        """Persist the image under its name and return its identifier."""


class ImageFetcher(ABC):
    """
    Fetches images from the local daemon or a remote registry.
    """

    @abstractmethod
    def fetch(self, name: str, daemon: bool, pull: bool) -> Image:
        """
        Fetch an image.

        Args:
            name: Image reference
            daemon: Read from the daemon instead of the registry
            pull: With daemon, refresh the daemon copy from the registry first

        Raises:
            NotFoundError: If the image does not exist where it was looked up
            ImageSourceError: On any other transport failure
        """
