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
Unit tests for the builder.toml parser.
"""
import logging

import pytest

from bpack.errors import ConfigError
from bpack.PARSERS.builder_config_parser import BuilderConfigParser

BUILDER_TOML = """
description = "Some description"

[[buildpacks]]
id = "bp.one"
version = "1.2.3"
uri = "buildpacks/bp-one"

[[buildpacks]]
uri = "https://example.com/bp-two.tgz"

[[order]]
[[order.group]]
id = "bp.one"
version = "1.2.3"

[[order.group]]
id = "bp.two"
optional = true

[stack]
id = "some.stack.id"
build-image = "some/build"
run-image = "some/run"
run-image-mirrors = ["gcr.io/some/run"]

[lifecycle]
version = "0.6.1"
"""


@pytest.fixture
def parser():
    return BuilderConfigParser()


class TestBuilderConfigParser:
    """Tests for BuilderConfigParser."""

    def test_parse_file(self, parser, tmp_path):
        """Test a complete builder.toml is read."""
        config_path = tmp_path / "builder.toml"
        config_path.write_text(BUILDER_TOML)

        config = parser.parse(str(config_path))

        assert config.description == "Some description"
        assert config.stack.id == "some.stack.id"
        assert config.stack.build_image == "some/build"
        assert config.stack.run_image == "some/run"
        assert config.stack.run_image_mirrors == ["gcr.io/some/run"]
        assert config.lifecycle.version == "0.6.1"
        assert config.lifecycle.uri == ""
        assert [(e.id, e.version, e.optional) for e in config.order[0].group] == [
            ("bp.one", "1.2.3", False),
            ("bp.two", "", True),
        ]

    def test_relative_uri_resolved_against_config_dir(self, parser, tmp_path):
        config_path = tmp_path / "builder.toml"
        config_path.write_text(BUILDER_TOML)

        config = parser.parse(str(config_path))

        assert config.buildpacks[0].uri == (tmp_path / "buildpacks" / "bp-one").resolve().as_uri()
        assert config.buildpacks[0].uri.startswith("file://")

    def test_urls_untouched(self, parser, tmp_path):
        config = parser.parse_from_string(BUILDER_TOML, str(tmp_path))
        assert config.buildpacks[1].uri == "https://example.com/bp-two.tgz"
        assert config.buildpacks[1].id == ""

    def test_absolute_path(self, parser, tmp_path):
        content = f'[[buildpacks]]\nuri = "{tmp_path / "bp"}"\n'
        config = parser.parse_from_string(content)
        assert config.buildpacks[0].uri == (tmp_path / "bp").resolve().as_uri()

    def test_deprecated_groups(self, parser, caplog):
        """Test 'groups' is read as 'order' with a warning."""
        content = '[[groups]]\n[[groups.group]]\nid = "bp.one"\n'
        with caplog.at_level(logging.WARNING):
            config = parser.parse_from_string(content)

        assert config.order[0].group[0].id == "bp.one"
        assert "'groups' field in builder config '<string>' is deprecated" in caplog.text

    def test_order_wins_over_groups(self, parser):
        content = '[[groups]]\n[[groups.group]]\nid = "bp.old"\n\n[[order]]\n[[order.group]]\nid = "bp.new"\n'
        config = parser.parse_from_string(content)
        assert [entry.id for entry in config.order[0].group] == ["bp.new"]

    def test_empty(self, parser):
        config = parser.parse_from_string("")
        assert config.stack.id == ""
        assert config.buildpacks == []
        assert config.order == []

    def test_missing_file(self, parser, tmp_path):
        with pytest.raises(ConfigError, match="reading builder config"):
            parser.parse(str(tmp_path / "missing.toml"))

    def test_malformed_toml(self, parser, tmp_path):
        config_path = tmp_path / "builder.toml"
        config_path.write_text("[stack\n")
        with pytest.raises(ConfigError, match="parsing builder config"):
            parser.parse(str(config_path))

    def test_invalid_field_type(self, parser):
        with pytest.raises(ConfigError, match="invalid builder config"):
            parser.parse_from_string('[[buildpacks]]\nid = "bp.one"\n')
