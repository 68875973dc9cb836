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
Parser for builder.toml files.
"""
import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict
from urllib.parse import urlparse

from pydantic import ValidationError

from ..errors import ConfigError
from ..MODELS.builder_config import BuilderConfig

logger = logging.getLogger(__name__)


class BuilderConfigParser:
    """
    Parser for builder.toml files.
    """

    def parse(self, config_path: str) -> BuilderConfig:
        """
        Parses a builder config from a path.

        Relative buildpack URIs are resolved against the directory holding
        the config file.

        :param config_path: Path to the builder.toml file.
        :return: Parsed configuration.
        """
        try:
            with open(config_path, 'rb') as f:
                data = tomllib.load(f)
        except OSError as e:
            raise ConfigError(f"reading builder config '{config_path}': {e}") from e
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"parsing builder config '{config_path}': {e}") from e

        base_dir = os.path.dirname(os.path.abspath(config_path))
        return self._build(data, base_dir, config_path)

    def parse_from_string(self, content: str, base_dir: str = ".") -> BuilderConfig:
        """
        Parses a builder config from a string.

        :param content: TOML content of the builder config.
        :param base_dir: Directory relative buildpack URIs are resolved against.
        :return: Parsed configuration.
        """
        try:
            data = tomllib.loads(content)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"parsing builder config: {e}") from e
        return self._build(data, os.path.abspath(base_dir), "<string>")

    def _build(self, data: Dict[str, Any], base_dir: str, source: str) -> BuilderConfig:
        if 'groups' in data:
            logger.warning("'groups' field in builder config '%s' is deprecated in favor of 'order'", source)
            groups = data.pop('groups')
            if 'order' not in data:
                data['order'] = groups

        for bp in data.get('buildpacks', []):
            if isinstance(bp, dict) and bp.get('uri'):
                bp['uri'] = self._absolute_uri(bp['uri'], base_dir)

        try:
            return BuilderConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"invalid builder config '{source}': {e}") from e

    @staticmethod
    def _absolute_uri(uri: str, base_dir: str) -> str:
        """
        Turns a relative path into an absolute file:// URI; leaves URIs alone.

        :param uri: URI or path from the config.
        :param base_dir: Directory the path is relative to.
        :return: The URI to fetch from.
        """
        scheme = urlparse(uri).scheme
        # single letters are Windows drive letters, not schemes
        if len(scheme) > 1:
            return uri
        path = Path(uri)
        if not path.is_absolute():
            path = Path(base_dir) / path
        return path.resolve().as_uri()
