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
Fetching buildpack and lifecycle archives from local paths and URLs.

Each kind of source is its own ArtifactSource; source_for() is the only
place that looks at a URI's scheme.
"""

import hashlib
import logging
import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request, url2pathname, urlopen

from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from ..errors import DownloadError, UnsupportedSourceError
from .blob import Blob

logger = logging.getLogger(__name__)


def default_cache_dir() -> Path:
    return Path.home() / ".bpack" / "download-cache"


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, HTTPError):
        return exc.code >= 500
    return isinstance(exc, (URLError, TimeoutError, ConnectionError))


class ArtifactSource(ABC):
    """
    Somewhere a buildpack or lifecycle can be fetched from.
    """

    def __init__(self, uri: str):
        self.uri = uri

    @abstractmethod
    def fetch_content(self) -> Blob:
        """
        Make the content available on local disk.

        Raises:
            DownloadError: If the content cannot be fetched
        """


class LocalPathSource(ArtifactSource):
    """A directory or archive on the local filesystem."""

    def __init__(self, uri: str, path: str):
        super().__init__(uri)
        self.path = path

    def fetch_content(self) -> Blob:
        if not os.path.exists(self.path):
            raise DownloadError(self.uri, f"no such file or directory '{self.path}'")
        return Blob(self.path)


class RemoteArchiveSource(ArtifactSource):
    """An archive served over HTTP(S), cached on local disk."""

    def __init__(self, uri: str, cache_dir: Path, timeout: int = 60):
        super().__init__(uri)
        self.cache_dir = Path(cache_dir)
        self.timeout = timeout

    def fetch_content(self) -> Blob:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        target = self.cache_dir / hashlib.sha256(self.uri.encode()).hexdigest()
        if target.exists():
            logger.debug("Using cached download of '%s'", self.uri)
            return Blob(str(target))

        logger.debug("Downloading from '%s'", self.uri)
        fd, tmp_name = tempfile.mkstemp(dir=self.cache_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, 'wb') as out:
                self._download(out)
            os.replace(tmp_name, target)
        except HTTPError as e:
            raise DownloadError(self.uri, f"HTTP {e.code}") from e
        except URLError as e:
            raise DownloadError(self.uri, str(e.reason)) from e
        except (OSError, TimeoutError) as e:
            raise DownloadError(self.uri, str(e)) from e
        finally:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
        return Blob(str(target))

    @retry(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=4),
        reraise=True,
    )
    def _download(self, out) -> None:
        out.seek(0)
        out.truncate()
        with urlopen(Request(self.uri), timeout=self.timeout) as response:
            shutil.copyfileobj(response, out)


def source_for(uri: str, cache_dir: Optional[Path] = None, timeout: int = 60) -> ArtifactSource:
    """
    Select the source variant for a URI.

    Args:
        uri: Plain path, file:// URI or http(s):// URL
        cache_dir: Where remote archives are cached. Defaults to ~/.bpack/download-cache
        timeout: Seconds to wait for remote responses

    Raises:
        UnsupportedSourceError: For any other kind of URI
    """
    parsed = urlparse(uri)
    scheme = parsed.scheme.lower()

    # single letters are Windows drive letters, not schemes
    if len(scheme) <= 1:
        return LocalPathSource(uri, uri)
    if scheme == "file":
        return LocalPathSource(uri, url2pathname(parsed.path))
    if scheme in ("http", "https"):
        return RemoteArchiveSource(uri, cache_dir or default_cache_dir(), timeout)
    raise UnsupportedSourceError(uri, f"unsupported URI scheme '{scheme}'")


class Downloader:
    """
    Downloads artifacts from any supported source.
    """

    def __init__(self, cache_dir: Optional[str] = None, timeout: int = 60):
        """
        Initialize the downloader.

        Args:
            cache_dir: Directory to cache downloads in. Defaults to ~/.bpack/download-cache
            timeout: Seconds to wait for remote responses
        """
        self.cache_dir = Path(cache_dir) if cache_dir else default_cache_dir()
        self.timeout = timeout

    def download(self, uri: str) -> Blob:
        """
        Fetch the content at a URI.

        Raises:
            DownloadError: If the content cannot be fetched
            UnsupportedSourceError: If the URI kind is not supported
        """
        return source_for(uri, self.cache_dir, self.timeout).fetch_content()
