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
Reading and writing the client configuration YAML file.
"""
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from ..errors import ConfigError
from ..MODELS.client_config import ClientConfig

CONFIG_FILE_NAME = "config.yml"


def bpack_home() -> Path:
    """Directory holding bpack's configuration and local state."""
    home = os.environ.get("BPACK_HOME")
    if home:
        return Path(home)
    return Path.home() / ".bpack"


def default_config_path() -> Path:
    return bpack_home() / CONFIG_FILE_NAME


def read_config(path: Optional[Path] = None) -> ClientConfig:
    """
    Load the client configuration.

    Args:
        path: Config file path. Defaults to $BPACK_HOME/config.yml

    Returns:
        The parsed configuration, or an empty one if the file does not exist.
    """
    path = Path(path) if path else default_config_path()
    if not path.exists():
        return ClientConfig()

    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"parsing config '{path}': {e}") from e

    try:
        return ClientConfig.model_validate(data or {})
    except ValidationError as e:
        raise ConfigError(f"invalid config '{path}': {e}") from e


def write_config(config: ClientConfig, path: Optional[Path] = None) -> Path:
    """
    Persist the client configuration.

    Args:
        config: Configuration to write
        path: Config file path. Defaults to $BPACK_HOME/config.yml

    Returns:
        Path the configuration was written to
    """
    path = Path(path) if path else default_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, 'w') as f:
        yaml.safe_dump(config.model_dump(), f, default_flow_style=False, sort_keys=False)
    os.replace(tmp_path, path)
    return path
