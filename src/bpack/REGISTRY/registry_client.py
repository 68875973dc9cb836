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
Registry client for reading and publishing images.
Implements the parts of the Registry HTTP API V2 needed to fetch image
manifests and configs, pull images into the local store, and push
rebased or newly assembled images back.
"""

import base64
import copy
import gzip
import hashlib
import json
import logging
import os
import platform
import re
import tempfile
from typing import Optional, Dict, List, Any, Tuple
from dataclasses import dataclass
from urllib.request import urlopen, Request
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode, urljoin

from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from ..errors import ImageSourceError, NotFoundError
from .image import Image
from .image_reference import ImageReference
from .local_store import LocalImage, LocalImageStore, file_digest

logger = logging.getLogger(__name__)

DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
DOCKER_CONFIG = "application/vnd.docker.container.image.v1+json"
DOCKER_LAYER = "application/vnd.docker.image.rootfs.diff.tar"
OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"
OCI_CONFIG = "application/vnd.oci.image.config.v1+json"
OCI_LAYER = "application/vnd.oci.image.layer.v1.tar"

MANIFEST_ACCEPT = ", ".join([DOCKER_MANIFEST, DOCKER_MANIFEST_LIST, OCI_MANIFEST, OCI_INDEX])

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


@dataclass
class RegistryAuth:
    """Authentication credentials for a registry."""

    username: Optional[str] = None
    password: Optional[str] = None


def _is_transient(exc: BaseException) -> bool:
    """Connection failures and 5xx responses are worth another attempt."""
    if isinstance(exc, HTTPError):
        return exc.code >= 500
    return isinstance(exc, (URLError, TimeoutError, ConnectionError))


@retry(
    retry=retry_if_exception(_is_transient),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, max=4),
    reraise=True,
)
def _send(request: Request, timeout: int) -> Tuple[int, Dict[str, str], bytes]:
    with urlopen(request, timeout=timeout) as response:
        headers = {k.lower(): v for k, v in response.headers.items()}
        return response.status, headers, response.read()


class RemoteImage(Image):
    """
    An image in a registry. Changes stay in memory until save() pushes them.
    """

    def __init__(self, client: "RegistryClient", name: str, ref: ImageReference,
                 manifest: Optional[Dict[str, Any]] = None, config: Optional[Dict[str, Any]] = None,
                 digest: str = ""):
        self._client = client
        self._name = name
        self.ref = ref
        self.manifest = copy.deepcopy(manifest) if manifest else {
            "schemaVersion": 2, "mediaType": DOCKER_MANIFEST, "layers": [],
        }
        self.config = copy.deepcopy(config) if config else {
            "architecture": "amd64", "os": "linux", "config": {},
            "rootfs": {"type": "layers", "diff_ids": []},
        }
        self.config.setdefault("config", {})
        self.config.setdefault("rootfs", {"type": "layers", "diff_ids": []})
        self._digest = digest
        self._base = ""
        self._pending_layers: Dict[str, str] = {}
        # digest -> image the blob has to be mounted from on save
        self._layer_sources: Dict[str, "RemoteImage"] = {}

    def name(self) -> str:
        return self._name

    def rename(self, name: str) -> None:
        try:
            ref = ImageReference.parse(name)
        except ValueError as e:
            raise ImageSourceError(f"invalid image reference '{name}': {e}") from e
        # blobs already in the old repository must be copied over on save
        if ref.context != self.ref.context:
            source = RemoteImage(self._client, self._name, self.ref, self.manifest, self.config, self._digest)
            for layer in self.manifest["layers"]:
                if layer["digest"] not in self._pending_layers:
                    self._layer_sources.setdefault(layer["digest"], source)
        self._name = name
        self.ref = ref

    def _labels(self) -> Dict[str, str]:
        container_config = self.config["config"]
        if container_config.get("Labels") is None:
            container_config["Labels"] = {}
        return container_config["Labels"]

    def labels(self) -> Dict[str, str]:
        return dict(self._labels())

    def label(self, key: str) -> str:
        return self._labels().get(key, "")

    def set_label(self, key: str, value: str) -> None:
        self._labels()[key] = value

    def env_vars(self) -> Dict[str, str]:
        result = {}
        for entry in self.config["config"].get("Env") or []:
            key, _, value = entry.partition("=")
            result[key] = value
        return result

    def env(self, key: str) -> str:
        return self.env_vars().get(key, "")

    def set_env(self, key: str, value: str) -> None:
        env = [e for e in self.config["config"].get("Env") or [] if e.partition("=")[0] != key]
        env.append(f"{key}={value}")
        self.config["config"]["Env"] = env

    def base(self) -> str:
        return self._base

    def diff_ids(self) -> List[str]:
        return list(self.config["rootfs"]["diff_ids"])

    def top_layer(self) -> str:
        diff_ids = self.config["rootfs"]["diff_ids"]
        return diff_ids[-1] if diff_ids else ""

    def identifier(self) -> str:
        if not self._digest:
            return ""
        return f"{self.ref.context}@{self._digest}"

    def _is_oci(self) -> bool:
        return self.manifest.get("mediaType", OCI_MANIFEST) == OCI_MANIFEST

    def add_layer(self, path: str) -> None:
        digest = file_digest(path)
        with open(path, 'rb') as f:
            size = f.seek(0, 2)
        self.manifest["layers"].append({
            "mediaType": OCI_LAYER if self._is_oci() else DOCKER_LAYER,
            "size": size,
            "digest": digest,
        })
        self.config["rootfs"]["diff_ids"].append(digest)
        self._pending_layers[digest] = path

    def rebase(self, base_top_layer: str, new_base: Image) -> None:
        if not isinstance(new_base, RemoteImage):
            raise ImageSourceError(
                f"cannot rebase registry image '{self._name}' onto non-registry image '{new_base.name()}'"
            )
        diff_ids = self.config["rootfs"]["diff_ids"]
        if base_top_layer not in diff_ids:
            raise ImageSourceError(
                f"image '{self._name}' does not contain base top layer '{base_top_layer}'"
            )
        keep_from = diff_ids.index(base_top_layer) + 1
        base_layers = copy.deepcopy(new_base.manifest["layers"])
        for layer in base_layers:
            self._layer_sources[layer["digest"]] = new_base

        self.manifest["layers"] = base_layers + self.manifest["layers"][keep_from:]
        self.config["rootfs"]["diff_ids"] = new_base.diff_ids() + diff_ids[keep_from:]
        self._base = new_base.name()

    def save(self) -> str:
        for layer in self.manifest["layers"]:
            digest = layer["digest"]
            if digest in self._pending_layers:
                self._client.upload_blob_file(self.ref, self._pending_layers[digest], digest)
            elif digest in self._layer_sources:
                self._client.copy_blob(self._layer_sources[digest].ref, self.ref, digest)

        config_bytes = json.dumps(self.config, separators=(",", ":")).encode()
        config_digest = f"sha256:{hashlib.sha256(config_bytes).hexdigest()}"
        self._client.upload_blob(self.ref, config_bytes, config_digest)
        self.manifest["config"] = {
            "mediaType": OCI_CONFIG if self._is_oci() else DOCKER_CONFIG,
            "size": len(config_bytes),
            "digest": config_digest,
        }

        self._digest = self._client.put_manifest(self.ref, self.manifest)
        self._pending_layers = {}
        self._layer_sources = {}
        return self.identifier()


class RegistryClient:
    """
    Client for interacting with OCI-compatible registries.
    Supports Docker Hub token auth and basic auth.
    """

    def __init__(self, timeout: int = 60):
        """
        Initialize the registry client.

        Args:
            timeout: Seconds to wait for each HTTP response.
        """
        self.timeout = timeout
        self._auth_tokens: Dict[Tuple[str, str, str], str] = {}
        self._credentials: Dict[str, RegistryAuth] = {}

    def set_credentials(self, registry: str, username: str, password: str) -> None:
        """
        Set credentials for a registry.

        Args:
            registry: Registry hostname (e.g., 'docker.io')
            username: Username
            password: Password or access token
        """
        self._credentials[registry] = RegistryAuth(username=username, password=password)

    def _basic_auth(self, registry: str) -> Optional[str]:
        creds = self._credentials.get(registry)
        if creds and creds.username and creds.password:
            auth = base64.b64encode(f"{creds.username}:{creds.password}".encode()).decode()
            return f"Basic {auth}"
        return None

    def _authenticate(self, ref: ImageReference, challenge: str, actions: str) -> Optional[str]:
        """Answer a WWW-Authenticate challenge and cache the resulting token."""
        if challenge.lower().startswith("basic"):
            return self._basic_auth(ref.registry)

        params = dict(_CHALLENGE_PARAM.findall(challenge))
        realm = params.get("realm")
        if not realm:
            return None

        query = {"scope": f"repository:{ref.repository}:{actions}"}
        if params.get("service"):
            query["service"] = params["service"]
        request = Request(f"{realm}?{urlencode(query)}")
        basic = self._basic_auth(ref.registry)
        if basic:
            request.add_header("Authorization", basic)

        try:
            _, _, body = _send(request, self.timeout)
        except OSError as e:
            raise ImageSourceError(f"authenticating to '{ref.registry}': {e}") from e
        data = json.loads(body.decode())
        token = f"Bearer {data.get('token') or data.get('access_token')}"
        self._auth_tokens[(ref.registry, ref.repository, actions)] = token
        return token

    def _request(self, method: str, url: str, ref: ImageReference, data: Optional[bytes] = None,
                 headers: Optional[Dict[str, str]] = None,
                 actions: str = "pull") -> Tuple[int, Dict[str, str], bytes]:
        """Make an authenticated request, answering one auth challenge if needed."""
        token = self._auth_tokens.get((ref.registry, ref.repository, actions))
        for attempt in range(2):
            request = Request(url, data=data, method=method)
            for key, value in (headers or {}).items():
                request.add_header(key, value)
            if token:
                request.add_header("Authorization", token)
            try:
                return _send(request, self.timeout)
            except HTTPError as e:
                challenge = e.headers.get("WWW-Authenticate", "") if e.headers else ""
                if e.code == 401 and attempt == 0 and challenge:
                    token = self._authenticate(ref, challenge, actions)
                    if token:
                        continue
                raise
        raise ImageSourceError(f"unauthorized: {method} {url}")

    def _call(self, method: str, url: str, ref: ImageReference, **kwargs) -> Tuple[int, Dict[str, str], bytes]:
        """_request with transport failures translated into ImageSourceError."""
        try:
            return self._request(method, url, ref, **kwargs)
        except HTTPError as e:
            if e.code == 404:
                raise NotFoundError(ref.short_name) from e
            if e.code in (401, 403):
                raise ImageSourceError(f"access to '{ref.short_name}' denied: HTTP {e.code}") from e
            raise ImageSourceError(f"{method} {url}: HTTP {e.code}") from e
        except URLError as e:
            raise ImageSourceError(f"connecting to registry '{ref.registry}': {e.reason}") from e
        except OSError as e:
            raise ImageSourceError(f"connecting to registry '{ref.registry}': {e}") from e

    def get_manifest(self, ref: ImageReference) -> Tuple[Dict[str, Any], str]:
        """
        Get the image manifest.

        Args:
            ref: Image reference

        Returns:
            Manifest as a dictionary and its digest
        """
        tag_or_digest = ref.digest if ref.digest else ref.tag
        url = f"{ref.registry_url}/v2/{ref.repository}/manifests/{tag_or_digest}"
        _, headers, content = self._call("GET", url, ref, headers={"Accept": MANIFEST_ACCEPT})
        manifest = json.loads(content.decode())

        if manifest.get("mediaType") in (DOCKER_MANIFEST_LIST, OCI_INDEX):
            return self._select_platform_manifest(ref, manifest)

        digest = headers.get("docker-content-digest") or f"sha256:{hashlib.sha256(content).hexdigest()}"
        return manifest, digest

    def _select_platform_manifest(self, ref: ImageReference,
                                  manifest_list: Dict[str, Any]) -> Tuple[Dict[str, Any], str]:
        """Select the manifest for linux on the current architecture."""
        arch_map = {
            "x86_64": "amd64",
            "aarch64": "arm64",
            "armv7l": "arm",
            "i386": "386",
            "i686": "386",
        }
        machine = platform.machine().lower()
        arch = arch_map.get(machine, machine)

        manifests = manifest_list.get("manifests", [])
        for entry in manifests:
            platform_info = entry.get("platform", {})
            if platform_info.get("os") == "linux" and platform_info.get("architecture") == arch:
                return self.get_manifest(ref.with_digest(entry["digest"]))

        if manifests:
            return self.get_manifest(ref.with_digest(manifests[0]["digest"]))

        raise ImageSourceError(f"no suitable manifest found for '{ref.short_name}'")

    def get_blob(self, ref: ImageReference, digest: str) -> bytes:
        url = f"{ref.registry_url}/v2/{ref.repository}/blobs/{digest}"
        _, _, content = self._call("GET", url, ref)
        actual = f"sha256:{hashlib.sha256(content).hexdigest()}"
        if actual != digest:
            raise ImageSourceError(f"blob digest mismatch: expected {digest}, got {actual}")
        return content

    def get_config(self, ref: ImageReference, manifest: Dict[str, Any]) -> Dict[str, Any]:
        """
        Get the image configuration.

        Args:
            ref: Image reference
            manifest: Image manifest

        Returns:
            Image configuration as a dictionary
        """
        digest = manifest.get("config", {}).get("digest", "")
        if not digest:
            raise ImageSourceError(f"no config digest in manifest of '{ref.short_name}'")
        return json.loads(self.get_blob(ref, digest).decode())

    def blob_exists(self, ref: ImageReference, digest: str) -> bool:
        url = f"{ref.registry_url}/v2/{ref.repository}/blobs/{digest}"
        try:
            self._call("HEAD", url, ref, actions="pull,push")
        except NotFoundError:
            return False
        return True

    def upload_blob(self, ref: ImageReference, data: bytes, digest: str) -> None:
        """
        Upload a blob with a monolithic upload, unless the registry already has it.

        Args:
            ref: Repository to upload into
            data: Blob content
            digest: Digest of data
        """
        if self.blob_exists(ref, digest):
            return
        url = f"{ref.registry_url}/v2/{ref.repository}/blobs/uploads/"
        _, headers, _ = self._call("POST", url, ref, data=b"", actions="pull,push")
        location = urljoin(ref.registry_url, headers.get("location", ""))
        separator = "&" if "?" in location else "?"
        self._call(
            "PUT", f"{location}{separator}{urlencode({'digest': digest})}", ref, data=data,
            headers={"Content-Type": "application/octet-stream"}, actions="pull,push",
        )
        logger.debug("Uploaded blob %s to '%s'", digest[:19], ref.context)

    def upload_blob_file(self, ref: ImageReference, path: str, digest: str) -> None:
        with open(path, 'rb') as f:
            data = f.read()
        self.upload_blob(ref, data, digest)

    def copy_blob(self, source: ImageReference, target: ImageReference, digest: str) -> None:
        """
        Make a blob from one repository available in another.
        Tries a cross-repository mount before falling back to download and upload.
        """
        if source.context == target.context or self.blob_exists(target, digest):
            return
        if source.registry == target.registry:
            url = (f"{target.registry_url}/v2/{target.repository}/blobs/uploads/?"
                   f"{urlencode({'mount': digest, 'from': source.repository})}")
            status, _, _ = self._call("POST", url, target, data=b"", actions="pull,push")
            if status == 201:
                return
        self.upload_blob(target, self.get_blob(source, digest), digest)

    def put_manifest(self, ref: ImageReference, manifest: Dict[str, Any]) -> str:
        """
        Publish a manifest under the reference's tag.

        Returns:
            Digest of the published manifest
        """
        content = json.dumps(manifest, separators=(",", ":")).encode()
        media_type = manifest.get("mediaType", OCI_MANIFEST)
        url = f"{ref.registry_url}/v2/{ref.repository}/manifests/{ref.tag or ref.DEFAULT_TAG}"
        _, headers, _ = self._call(
            "PUT", url, ref, data=content, headers={"Content-Type": media_type}, actions="pull,push",
        )
        return headers.get("docker-content-digest") or f"sha256:{hashlib.sha256(content).hexdigest()}"

    def fetch_image(self, image_name: str) -> RemoteImage:
        """
        Read an image's manifest and config without pulling its layers.

        Raises:
            NotFoundError: If the registry does not have the image
        """
        try:
            ref = ImageReference.parse(image_name)
        except ValueError as e:
            raise ImageSourceError(f"invalid image reference '{image_name}': {e}") from e
        try:
            manifest, digest = self.get_manifest(ref)
        except NotFoundError as e:
            raise NotFoundError(image_name) from e
        config = self.get_config(ref, manifest)
        return RemoteImage(self, image_name, ref, manifest, config, digest)

    def pull_image(self, image_name: str, store: LocalImageStore) -> LocalImage:
        """
        Pull a complete image into the local store.

        Args:
            image_name: Image name (e.g., 'some/run:latest')
            store: Store to pull into

        Returns:
            The stored image
        """
        image = self.fetch_image(image_name)
        logger.info("Pulling image '%s'", image.ref.full_name)

        layers = image.manifest.get("layers", [])
        diff_ids = image.diff_ids()
        for i, (layer, diff_id) in enumerate(zip(layers, diff_ids)):
            if store.has_layer(diff_id):
                logger.debug("Layer %d/%d already present: %s", i + 1, len(layers), diff_id[:19])
                continue
            logger.debug("Pulling layer %d/%d: %s", i + 1, len(layers), layer["digest"][:19])
            content = self.get_blob(image.ref, layer["digest"])
            if layer.get("mediaType", "").endswith("gzip") or content[:2] == b"\x1f\x8b":
                content = gzip.decompress(content)
            with tempfile.NamedTemporaryFile(dir=store.layers_dir, delete=False) as tmp:
                tmp.write(content)
            try:
                store.add_layer(diff_id, tmp.name)
            finally:
                if os.path.exists(tmp.name):
                    os.unlink(tmp.name)

        record = {
            "name": image_name,
            "labels": image.labels(),
            "env": image.env_vars(),
            "layers": diff_ids,
            "base": "",
        }
        store.put(image_name, record)
        return store.get(image_name)
