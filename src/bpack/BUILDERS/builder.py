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
The builder image: a build image extended with buildpacks, an order and a lifecycle.
"""
import io
import logging
import os
import tarfile
import tempfile
from typing import Dict, List, Optional

import tomli_w

from .. import __version__
from ..DOWNLOADERS.blob import NORMALIZED_MTIME
from ..errors import InvalidBuilderError
from ..MODELS.builder_config import OrderEntry, Stack
from ..MODELS.image_metadata import (
    BUILDER_METADATA_LABEL,
    STACK_ID_LABEL,
    BuilderMetadata,
    BuildpackMetadata,
    CreatorMetadata,
    GroupBuildpack,
    GroupMetadata,
    LifecycleAPIs,
    LifecycleMetadata,
    RunImageMetadata,
    StackMetadata,
    read_label,
    read_mixins,
    write_label,
    write_mixins,
)
from ..REGISTRY.image import Image
from .buildpack import Buildpack
from .lifecycle import Lifecycle

logger = logging.getLogger(__name__)

CNB_DIR = "/cnb"
BUILDPACKS_DIR = "/cnb/buildpacks"
ORDER_PATH = "/cnb/order.toml"
STACK_PATH = "/cnb/stack.toml"

CREATOR_NAME = "bpack"


def _env_int(image: Image, key: str) -> int:
    value = image.env(key)
    if not value:
        raise InvalidBuilderError(f"image '{image.name()}' missing required env var '{key}'")
    try:
        return int(value)
    except ValueError:
        raise InvalidBuilderError(f"failed to parse '{key}', value '{value}' should be an integer")


def escape_id(buildpack_id: str) -> str:
    """Directory name for a buildpack ID; '/' would nest directories."""
    return buildpack_id.replace("/", "_")


class Builder:
    """
    A builder image under construction, or an existing one being inspected.

    Nothing is written to the underlying image until save(); an abandoned
    Builder leaves no trace.
    """

    def __init__(self, image: Image, stack_id: str, metadata: BuilderMetadata,
                 mixins: List[str], uid: int = 0, gid: int = 0):
        self.image = image
        self.stack_id = stack_id
        self.uid = uid
        self.gid = gid
        self._metadata = metadata
        self._mixins = list(mixins)
        self._buildpacks: List[Buildpack] = []
        self._order: List[OrderEntry] = []
        self._stack: Optional[Stack] = None
        self._lifecycle: Optional[Lifecycle] = None

    @classmethod
    def new(cls, image: Image, name: str) -> "Builder":
        """
        Start a new builder on top of a build image.

        :param image: The fetched build image.
        :param name: Name the builder will be saved under.
        :raises InvalidBuilderError: If the image lacks a stack ID or the CNB user/group.
        """
        stack_id = image.label(STACK_ID_LABEL)
        if not stack_id:
            raise InvalidBuilderError(f"image '{image.name()}' missing label '{STACK_ID_LABEL}'")
        uid = _env_int(image, "CNB_USER_ID")
        gid = _env_int(image, "CNB_GROUP_ID")

        image.rename(name)
        return cls(image, stack_id, BuilderMetadata(), [], uid, gid)

    @classmethod
    def get(cls, image: Image) -> "Builder":
        """
        Read an existing builder image.

        :raises InvalidBuilderError: If the image carries no builder metadata.
        """
        metadata, found = read_label(image, BUILDER_METADATA_LABEL, BuilderMetadata)
        if not found:
            raise InvalidBuilderError(f"builder '{image.name()}' missing label '{BUILDER_METADATA_LABEL}'")
        return cls(image, image.label(STACK_ID_LABEL), metadata, read_mixins(image))

    def description(self) -> str:
        return self._metadata.description

    def stack(self) -> StackMetadata:
        return self._metadata.stack

    def mixins(self) -> List[str]:
        return list(self._mixins)

    def buildpacks(self) -> List[BuildpackMetadata]:
        return list(self._metadata.buildpacks)

    def groups(self) -> List[GroupMetadata]:
        return list(self._metadata.groups)

    def lifecycle_descriptor(self) -> LifecycleMetadata:
        return self._metadata.lifecycle

    def created_by(self) -> CreatorMetadata:
        return self._metadata.created_by

    def set_description(self, description: str) -> None:
        self._metadata.description = description

    def set_mixins(self, mixins: List[str]) -> None:
        self._mixins = list(mixins)

    def set_lifecycle(self, lifecycle: Lifecycle) -> None:
        self._lifecycle = lifecycle
        api = lifecycle.descriptor.api
        self._metadata.lifecycle = LifecycleMetadata(
            version=lifecycle.version,
            api=LifecycleAPIs(buildpack=api.buildpack, platform=api.platform),
        )

    def add_buildpack(self, buildpack: Buildpack) -> None:
        # a buildpack added twice keeps only its latest content
        self._buildpacks = [
            bp for bp in self._buildpacks
            if (bp.id, bp.version) != (buildpack.id, buildpack.version)
        ]
        self._buildpacks.append(buildpack)

    def set_order(self, order: List[OrderEntry]) -> None:
        self._order = list(order)

    def set_stack(self, stack: Stack) -> None:
        self._stack = stack
        self._metadata.stack = StackMetadata(
            run_image=RunImageMetadata(image=stack.run_image, mirrors=list(stack.run_image_mirrors))
        )

    def _latest_versions(self) -> Dict[str, str]:
        latest: Dict[str, str] = {}
        for bp in self._buildpacks:
            latest[bp.id] = bp.version
        return latest

    def _resolve_order(self) -> List[GroupMetadata]:
        latest = self._latest_versions()
        added = {(bp.id, bp.version) for bp in self._buildpacks}

        groups = []
        for entry in self._order:
            group = []
            for ref in entry.group:
                if ref.id not in latest:
                    raise InvalidBuilderError(
                        f"order references buildpack '{ref.id}' which is not in the builder"
                    )
                version = ref.version or latest[ref.id]
                if (ref.id, version) not in added:
                    raise InvalidBuilderError(
                        f"order references buildpack '{ref.id}@{version}' which is not in the builder"
                    )
                group.append(GroupBuildpack(id=ref.id, version=version, optional=ref.optional))
            groups.append(GroupMetadata(buildpacks=group))
        return groups

    def save(self) -> str:
        """
        Write every layer and label and save the image under the builder name.

        Returns:
            Identifier of the saved builder image

        Raises:
            InvalidBuilderError: If the lifecycle or stack is missing, or the
                order references buildpacks that were not added
            ImageSourceError: If the image cannot be persisted
        """
        if self._lifecycle is None:
            raise InvalidBuilderError("builder has no lifecycle")
        if self._stack is None:
            raise InvalidBuilderError("builder has no stack")

        groups = self._resolve_order()
        latest = self._latest_versions()

        self._metadata.groups = groups
        self._metadata.buildpacks = [
            BuildpackMetadata(id=bp.id, version=bp.version, latest=latest[bp.id] == bp.version)
            for bp in self._buildpacks
        ]
        self._metadata.created_by = CreatorMetadata(name=CREATOR_NAME, version=__version__)

        with tempfile.TemporaryDirectory(prefix="bpack-builder-") as tmp_dir:
            for index, bp in enumerate(self._buildpacks):
                self.image.add_layer(self._buildpack_layer(tmp_dir, index, bp, latest[bp.id] == bp.version))
            self.image.add_layer(self._order_layer(tmp_dir, groups))
            self.image.add_layer(self._stack_layer(tmp_dir))
            self.image.add_layer(self._lifecycle_layer(tmp_dir))

            write_label(self.image, BUILDER_METADATA_LABEL, self._metadata)
            write_mixins(self.image, self._mixins)

            identifier = self.image.save()

        logger.info("Successfully created builder image '%s'", self.image.name())
        return identifier

    def _dir_entry(self, tar: tarfile.TarFile, path: str) -> None:
        info = tarfile.TarInfo(path.strip("/"))
        info.type = tarfile.DIRTYPE
        info.mode = 0o755
        info.mtime = NORMALIZED_MTIME
        info.uid, info.gid = self.uid, self.gid
        tar.addfile(info)

    def _file_entry(self, tar: tarfile.TarFile, path: str, data: bytes) -> None:
        info = tarfile.TarInfo(path.strip("/"))
        info.size = len(data)
        info.mode = 0o644
        info.mtime = NORMALIZED_MTIME
        info.uid, info.gid = self.uid, self.gid
        tar.addfile(info, io.BytesIO(data))

    def _buildpack_layer(self, tmp_dir: str, index: int, bp: Buildpack, is_latest: bool) -> str:
        bp_dir = f"{BUILDPACKS_DIR}/{escape_id(bp.id)}"
        path = os.path.join(tmp_dir, f"buildpack-{index}.tar")
        with tarfile.open(path, "w", format=tarfile.PAX_FORMAT) as tar:
            self._dir_entry(tar, CNB_DIR)
            self._dir_entry(tar, BUILDPACKS_DIR)
            self._dir_entry(tar, bp_dir)
            self._dir_entry(tar, f"{bp_dir}/{bp.version}")
            bp.blob.write_to(tar, f"{bp_dir}/{bp.version}", self.uid, self.gid)
            if is_latest:
                link = tarfile.TarInfo(f"{bp_dir}/latest".strip("/"))
                link.type = tarfile.SYMTYPE
                link.linkname = bp.version
                link.mtime = NORMALIZED_MTIME
                link.uid, link.gid = self.uid, self.gid
                tar.addfile(link)
        return path

    def _order_layer(self, tmp_dir: str, groups: List[GroupMetadata]) -> str:
        order = {
            "order": [
                {"group": [
                    {"id": bp.id, "version": bp.version, **({"optional": True} if bp.optional else {})}
                    for bp in group.buildpacks
                ]}
                for group in groups
            ]
        }
        path = os.path.join(tmp_dir, "order.tar")
        with tarfile.open(path, "w", format=tarfile.PAX_FORMAT) as tar:
            self._dir_entry(tar, CNB_DIR)
            self._file_entry(tar, ORDER_PATH, tomli_w.dumps(order).encode())
        return path

    def _stack_layer(self, tmp_dir: str) -> str:
        run_image = {"image": self._stack.run_image, "mirrors": list(self._stack.run_image_mirrors)}
        path = os.path.join(tmp_dir, "stack.tar")
        with tarfile.open(path, "w", format=tarfile.PAX_FORMAT) as tar:
            self._dir_entry(tar, CNB_DIR)
            self._file_entry(tar, STACK_PATH, tomli_w.dumps({"run-image": run_image}).encode())
        return path

    def _lifecycle_layer(self, tmp_dir: str) -> str:
        path = os.path.join(tmp_dir, "lifecycle.tar")
        with tarfile.open(path, "w", format=tarfile.PAX_FORMAT) as tar:
            self._dir_entry(tar, CNB_DIR)
            # archive entries live under lifecycle/, landing in /cnb/lifecycle
            self._lifecycle.blob.write_to(tar, CNB_DIR, self.uid, self.gid)
        return path
