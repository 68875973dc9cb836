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
Unit tests for the client configuration.
"""
import pytest
import yaml

from bpack.errors import ConfigError
from bpack.MODELS.client_config import ClientConfig
from bpack.PARSERS import client_config_parser
from bpack.PARSERS.client_config_parser import default_config_path, read_config, write_config


class TestClientConfig:
    """Tests for ClientConfig."""

    def test_set_run_image_mirrors_adds(self):
        config = ClientConfig()
        config.set_run_image_mirrors("some/run", ["example.com/some/run"])
        assert config.mirrors() == {"some/run": ["example.com/some/run"]}

    def test_set_run_image_mirrors_replaces(self):
        """Test mirrors for a known run image are replaced, not appended."""
        config = ClientConfig()
        config.set_run_image_mirrors("some/run", ["example.com/some/run"])
        config.set_run_image_mirrors("other/run", ["example.com/other/run"])
        config.set_run_image_mirrors("some/run", ["gcr.io/some/run", "quay.io/some/run"])
        assert config.mirrors() == {
            "some/run": ["gcr.io/some/run", "quay.io/some/run"],
            "other/run": ["example.com/other/run"],
        }

    def test_mirrors_are_copies(self):
        config = ClientConfig()
        config.set_run_image_mirrors("some/run", ["example.com/some/run"])
        config.mirrors()["some/run"].append("changed")
        assert config.mirrors() == {"some/run": ["example.com/some/run"]}


class TestReadWriteConfig:
    """Tests for reading and writing config.yml."""

    def test_home_from_env(self, bpack_home):
        assert client_config_parser.bpack_home() == bpack_home
        assert default_config_path() == bpack_home / "config.yml"

    def test_missing_file(self, bpack_home):
        config = read_config()
        assert config.default_builder_image == ""
        assert config.run_images == []

    def test_round_trip(self, bpack_home):
        config = ClientConfig()
        config.set_default_builder("some/builder")
        config.set_run_image_mirrors("some/run", ["example.com/some/run"])

        path = write_config(config)

        assert path == bpack_home / "config.yml"
        read = read_config()
        assert read.default_builder_image == "some/builder"
        assert read.mirrors() == {"some/run": ["example.com/some/run"]}

    def test_written_as_yaml(self, tmp_path):
        config = ClientConfig(default_builder_image="some/builder")
        path = write_config(config, tmp_path / "config.yml")
        assert yaml.safe_load(path.read_text())["default_builder_image"] == "some/builder"
        assert not (tmp_path / "config.yml.tmp").exists()

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("")
        assert read_config(path).default_builder_image == ""

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("run_images: [unclosed\n")
        with pytest.raises(ConfigError, match="parsing config"):
            read_config(path)

    def test_invalid_content(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("run_images:\n  - mirrors: [example.com/some/run]\n")
        with pytest.raises(ConfigError, match="invalid config"):
            read_config(path)
