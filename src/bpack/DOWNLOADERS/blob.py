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
Downloaded artifact content, either a directory or a tarball.
"""

import copy
import os
import stat
import tarfile
from typing import IO, Callable, Iterator, List, Optional, Tuple

# 1980-01-01, so that layers built from the same content are identical
NORMALIZED_MTIME = 315532800

Opener = Callable[[], Optional[IO[bytes]]]


def normalize_entry_name(name: str) -> str:
    """Strip leading './' and '/' so directory and tarball entries compare equal."""
    name = name.replace("\\", "/")
    while name.startswith("./"):
        name = name[2:]
    return name.strip("/")


class Blob:
    """
    Buildpack or lifecycle content on local disk.

    The path is either a directory or an optionally gzipped tarball; both
    are presented as the same sequence of tar entries.
    """

    def __init__(self, path: str):
        self.path = str(path)

    def is_dir(self) -> bool:
        return os.path.isdir(self.path)

    def entries(self) -> Iterator[Tuple[tarfile.TarInfo, Opener]]:
        """
        Iterate over the content as tar entries with normalized names.

        Each entry comes with an opener returning a readable file object for
        regular files and None otherwise. Openers are only valid until the
        iteration moves on.
        """
        if self.is_dir():
            yield from self._dir_entries()
        else:
            yield from self._tar_entries()

    def _dir_entries(self) -> Iterator[Tuple[tarfile.TarInfo, Opener]]:
        for root, dirs, files in os.walk(self.path):
            dirs.sort()
            for entry in dirs + sorted(files):
                full = os.path.join(root, entry)
                st = os.lstat(full)
                info = tarfile.TarInfo(normalize_entry_name(os.path.relpath(full, self.path)))
                info.mode = stat.S_IMODE(st.st_mode)
                info.mtime = int(st.st_mtime)
                if stat.S_ISDIR(st.st_mode):
                    info.type = tarfile.DIRTYPE
                    yield info, lambda: None
                elif stat.S_ISLNK(st.st_mode):
                    info.type = tarfile.SYMTYPE
                    info.linkname = os.readlink(full)
                    yield info, lambda: None
                else:
                    info.size = st.st_size
                    yield info, lambda full=full: open(full, 'rb')

    def _tar_entries(self) -> Iterator[Tuple[tarfile.TarInfo, Opener]]:
        with tarfile.open(self.path, mode="r:*") as tar:
            for member in tar:
                name = normalize_entry_name(member.name)
                if not name or name == ".":
                    continue
                info = copy.copy(member)
                info.name = name
                yield info, lambda member=member: tar.extractfile(member) if member.isfile() else None

    def names(self) -> List[str]:
        return [info.name for info, _ in self.entries()]

    def read_entry(self, name: str) -> Optional[bytes]:
        """
        Read a single regular file.

        :param name: Entry path, relative to the root of the content.
        :return: The file content, or None if there is no such file.
        """
        name = normalize_entry_name(name)
        for info, opener in self.entries():
            if info.name == name and info.isfile():
                f = opener()
                with f:
                    return f.read()
        return None

    def write_to(self, tar_out: tarfile.TarFile, prefix: str, uid: int = 0, gid: int = 0) -> None:
        """
        Copy the content into a layer tarball below a path prefix.

        :param tar_out: Layer tarball opened for writing.
        :param prefix: Absolute path the content is placed under, e.g. /cnb/lifecycle.
        :param uid: Owner of the written entries.
        :param gid: Group of the written entries.
        """
        prefix = prefix.strip("/")
        for info, opener in self.entries():
            out = copy.copy(info)
            out.name = f"{prefix}/{info.name}"
            out.uid, out.gid = uid, gid
            out.uname = out.gname = ""
            out.mtime = NORMALIZED_MTIME
            if info.isfile():
                f = opener()
                with f:
                    tar_out.addfile(out, f)
            else:
                tar_out.addfile(out)
