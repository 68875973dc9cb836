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
Local image store.
A file-backed stand-in for the image daemon: image records live in an
index file and layers are stored content-addressed by their diff ID.
"""

import copy
import hashlib
import json
import logging
import os
import shutil
from typing import Optional, List, Dict, Any
from pathlib import Path
from datetime import datetime, timezone

from ..errors import ImageSourceError, NotFoundError
from .image import Image
from .image_reference import ImageReference

logger = logging.getLogger(__name__)


def file_digest(path: str) -> str:
    """sha256 digest of a file's content, in 'sha256:<hex>' form."""
    h = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return f"sha256:{h.hexdigest()}"


def _empty_record(name: str) -> Dict[str, Any]:
    return {"name": name, "labels": {}, "env": {}, "layers": [], "base": ""}


class LocalImage(Image):
    """
    An image held by the local store. Changes stay in memory until save().
    """

    def __init__(self, store: "LocalImageStore", name: str, record: Optional[Dict[str, Any]] = None):
        self._store = store
        self._name = name
        self._record = copy.deepcopy(record) if record else _empty_record(name)
        self._pending_layers: Dict[str, str] = {}
        self._identifier = record.get("id", "") if record else ""

    def name(self) -> str:
        return self._name

    def rename(self, name: str) -> None:
        self._name = name

    def label(self, key: str) -> str:
        return self._record["labels"].get(key, "")

    def set_label(self, key: str, value: str) -> None:
        self._record["labels"][key] = value

    def env(self, key: str) -> str:
        return self._record["env"].get(key, "")

    def set_env(self, key: str, value: str) -> None:
        self._record["env"][key] = value

    def base(self) -> str:
        return self._record.get("base", "")

    def layers(self) -> List[str]:
        return list(self._record["layers"])

    def top_layer(self) -> str:
        layers = self._record["layers"]
        return layers[-1] if layers else ""

    def identifier(self) -> str:
        return self._identifier

    def add_layer(self, path: str) -> None:
        diff_id = file_digest(path)
        self._pending_layers[diff_id] = path
        self._record["layers"].append(diff_id)

    def rebase(self, base_top_layer: str, new_base: Image) -> None:
        if not isinstance(new_base, LocalImage):
            raise ImageSourceError(
                f"cannot rebase local image '{self._name}' onto non-local image '{new_base.name()}'"
            )
        layers = self._record["layers"]
        if base_top_layer not in layers:
            raise ImageSourceError(
                f"image '{self._name}' does not contain base top layer '{base_top_layer}'"
            )
        app_layers = layers[layers.index(base_top_layer) + 1:]
        self._record["layers"] = new_base.layers() + app_layers
        self._record["base"] = new_base.name()

    def save(self) -> str:
        for diff_id, path in self._pending_layers.items():
            self._store.add_layer(diff_id, path)
        self._pending_layers = {}
        self._identifier = self._store.put(self._name, self._record)
        return self._identifier


class LocalImageStore:
    """
    Manages locally stored images.
    Provides content-addressable storage for image layers.
    """

    def __init__(self, store_dir: str):
        """
        Initialize the local store.

        Args:
            store_dir: Directory for image records and layers.
        """
        self.store_dir = Path(store_dir)
        self.layers_dir = self.store_dir / "layers"
        self.index_file = self.store_dir / "index.json"

        self.layers_dir.mkdir(parents=True, exist_ok=True)

    def _load_index(self) -> Dict[str, Any]:
        """Load the store index from disk."""
        if self.index_file.exists():
            try:
                with open(self.index_file, 'r') as f:
                    return json.load(f)
            except json.JSONDecodeError as e:
                raise ImageSourceError(f"corrupt image index '{self.index_file}': {e}") from e
        return {"images": {}}

    def _save_index(self, index: Dict[str, Any]) -> None:
        """Save the store index to disk atomically."""
        tmp = self.index_file.with_suffix(".json.tmp")
        with open(tmp, 'w') as f:
            json.dump(index, f, indent=2)
        os.replace(tmp, self.index_file)

    @staticmethod
    def _key(name: str) -> str:
        try:
            return ImageReference.parse(name).full_name
        except ValueError as e:
            raise ImageSourceError(f"invalid image reference '{name}': {e}") from e

    def get(self, name: str) -> LocalImage:
        """
        Get a stored image.

        Args:
            name: Image name or reference

        Raises:
            NotFoundError: If no image is stored under the name
        """
        record = self._load_index()["images"].get(self._key(name))
        if record is None:
            raise NotFoundError(name, where="daemon")
        return LocalImage(self, name, record)

    def put(self, name: str, record: Dict[str, Any]) -> str:
        """
        Store an image record under a name.

        Returns:
            Identifier of the stored image
        """
        stored = copy.deepcopy(record)
        stored.pop("id", None)
        stored["name"] = name
        encoded = json.dumps(stored, sort_keys=True).encode()
        stored["id"] = f"sha256:{hashlib.sha256(encoded).hexdigest()}"
        stored["saved_at"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

        index = self._load_index()
        index["images"][self._key(name)] = stored
        self._save_index(index)
        logger.debug("Stored image '%s' as %s", name, stored["id"])
        return stored["id"]

    def has_layer(self, diff_id: str) -> bool:
        """Check if a layer is stored."""
        return self.layer_path(diff_id).exists()

    def layer_path(self, diff_id: str) -> Path:
        return self.layers_dir / diff_id.replace(":", "_")

    def add_layer(self, diff_id: str, path: str) -> Path:
        """
        Copy an uncompressed layer tar into the store.

        Args:
            diff_id: Layer diff ID
            path: Path of the layer tar

        Returns:
            Path to the stored layer
        """
        layer_path = self.layer_path(diff_id)
        if layer_path.exists():
            return layer_path

        tmp = layer_path.with_suffix(".tmp")
        shutil.copyfile(path, tmp)
        if file_digest(str(tmp)) != diff_id:
            tmp.unlink()
            raise ImageSourceError(f"layer digest mismatch for '{diff_id}'")
        os.replace(tmp, layer_path)
        return layer_path

    def list_images(self) -> List[str]:
        """Names of all stored images."""
        return sorted(record["name"] for record in self._load_index()["images"].values())
