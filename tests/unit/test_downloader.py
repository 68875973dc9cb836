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
Unit tests for artifact downloads and blob content.
"""
import io
import tarfile
from urllib.error import HTTPError

import pytest

from bpack.DOWNLOADERS.blob import NORMALIZED_MTIME, Blob, normalize_entry_name
from bpack.DOWNLOADERS.downloader import (
    Downloader,
    LocalPathSource,
    RemoteArchiveSource,
    source_for,
)
from bpack.errors import DownloadError, UnsupportedSourceError


@pytest.fixture
def content_dir(tmp_path):
    root = tmp_path / "content"
    (root / "bin").mkdir(parents=True)
    (root / "bin" / "detect").write_text("#!/bin/sh\n")
    (root / "buildpack.toml").write_text("[buildpack]\n")
    return root


@pytest.fixture
def content_tgz(tmp_path, content_dir):
    archive = tmp_path / "content.tgz"
    with tarfile.open(archive, "w:gz") as tar:
        tar.add(content_dir, arcname=".")
    return archive


class TestSourceFor:
    """Tests for selecting a source by URI."""

    def test_plain_path(self):
        source = source_for("/some/buildpack")
        assert isinstance(source, LocalPathSource)
        assert source.path == "/some/buildpack"

    def test_file_uri(self):
        source = source_for("file:///some/buildpack")
        assert isinstance(source, LocalPathSource)
        assert source.path == "/some/buildpack"

    @pytest.mark.parametrize("uri", ["http://example.com/bp.tgz", "https://example.com/bp.tgz"])
    def test_remote(self, uri, tmp_path):
        source = source_for(uri, tmp_path)
        assert isinstance(source, RemoteArchiveSource)
        assert source.cache_dir == tmp_path

    def test_unsupported_scheme(self):
        with pytest.raises(UnsupportedSourceError, match="unsupported URI scheme 'ftp'"):
            source_for("ftp://example.com/bp.tgz")


class TestDownloader:
    """Tests for Downloader.download."""

    def test_local_directory(self, tmp_path, content_dir):
        blob = Downloader(str(tmp_path / "cache")).download(str(content_dir))
        assert blob.is_dir()
        assert blob.path == str(content_dir)

    def test_file_uri(self, tmp_path, content_tgz):
        blob = Downloader(str(tmp_path / "cache")).download(content_tgz.as_uri())
        assert blob.path == str(content_tgz)

    def test_missing_path(self, tmp_path):
        with pytest.raises(DownloadError, match="no such file or directory"):
            Downloader(str(tmp_path / "cache")).download(str(tmp_path / "missing"))

    def test_remote_is_cached(self, tmp_path, content_tgz, monkeypatch):
        """Test a remote archive lands in the cache directory."""

        def fake_download(self, out):
            out.write(content_tgz.read_bytes())

        monkeypatch.setattr(RemoteArchiveSource, "_download", fake_download)
        cache = tmp_path / "cache"

        blob = Downloader(str(cache)).download("https://example.com/bp.tgz")

        assert blob.path.startswith(str(cache))
        assert blob.read_entry("buildpack.toml") == b"[buildpack]\n"
        assert not list(cache.glob("*.tmp"))

    def test_remote_cache_reused(self, tmp_path, content_tgz, monkeypatch):
        """Test a second download of the same URL is served from the cache."""
        calls = []

        def fake_download(self, out):
            calls.append(self.uri)
            out.write(content_tgz.read_bytes())

        monkeypatch.setattr(RemoteArchiveSource, "_download", fake_download)
        downloader = Downloader(str(tmp_path / "cache"))

        first = downloader.download("https://example.com/bp.tgz")
        second = downloader.download("https://example.com/bp.tgz")
        downloader.download("https://example.com/other.tgz")

        assert second.path == first.path
        assert second.read_entry("buildpack.toml") == b"[buildpack]\n"
        assert calls == ["https://example.com/bp.tgz", "https://example.com/other.tgz"]

    def test_remote_http_error(self, tmp_path, monkeypatch):
        def fake_download(self, out):
            raise HTTPError(self.uri, 404, "Not Found", {}, None)

        monkeypatch.setattr(RemoteArchiveSource, "_download", fake_download)
        cache = tmp_path / "cache"

        with pytest.raises(DownloadError, match="HTTP 404"):
            Downloader(str(cache)).download("https://example.com/bp.tgz")
        assert not list(cache.iterdir())

    def test_default_cache_dir(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HOME", str(tmp_path))
        assert Downloader().cache_dir == tmp_path / ".bpack" / "download-cache"


class TestBlob:
    """Tests for reading blob content."""

    @pytest.mark.parametrize("name,expected", [
        ("./bin/detect", "bin/detect"),
        ("/bin/detect", "bin/detect"),
        ("bin/", "bin"),
        ("bin\\detect", "bin/detect"),
    ])
    def test_normalize_entry_name(self, name, expected):
        assert normalize_entry_name(name) == expected

    def test_directory_and_tarball_agree(self, content_dir, content_tgz):
        assert sorted(Blob(str(content_dir)).names()) == sorted(Blob(str(content_tgz)).names())
        assert set(Blob(str(content_dir)).names()) == {"bin", "bin/detect", "buildpack.toml"}

    def test_read_entry(self, content_tgz):
        blob = Blob(str(content_tgz))
        assert blob.read_entry("./bin/detect") == b"#!/bin/sh\n"
        assert blob.read_entry("missing") is None
        assert blob.read_entry("bin") is None

    def test_write_to(self, content_dir):
        """Test entries are written below the prefix with normalized ownership."""
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w") as tar:
            Blob(str(content_dir)).write_to(tar, "/cnb/buildpacks/bp.one/1.0.0", uid=1234, gid=4321)

        buf.seek(0)
        with tarfile.open(fileobj=buf, mode="r") as tar:
            members = {m.name: m for m in tar.getmembers()}
            assert tar.extractfile(members["cnb/buildpacks/bp.one/1.0.0/bin/detect"]).read() == b"#!/bin/sh\n"

        assert set(members) == {
            "cnb/buildpacks/bp.one/1.0.0/bin",
            "cnb/buildpacks/bp.one/1.0.0/bin/detect",
            "cnb/buildpacks/bp.one/1.0.0/buildpack.toml",
        }
        for member in members.values():
            assert (member.uid, member.gid) == (1234, 4321)
            assert member.mtime == NORMALIZED_MTIME
