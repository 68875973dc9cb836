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
Integration tests for the bpack command line.
"""
import json

import pytest
from click.testing import CliRunner

from bpack.CLI.main import cli
from bpack.DOWNLOADERS.downloader import Downloader
from bpack.errors import BpackError
from bpack.MANAGERS.client import Client
from bpack.MODELS.client_config import ClientConfig
from bpack.MODELS.image_metadata import BUILDER_METADATA_LABEL, LIFECYCLE_METADATA_LABEL, STACK_ID_LABEL
from bpack.PARSERS.client_config_parser import read_config

from fakes import FakeImage, FakeImageFetcher, make_buildpack, make_lifecycle, stack_image


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def images():
    fetcher = FakeImageFetcher()
    fetcher.local_images["some/build"] = stack_image("some/build")
    fetcher.local_images["some/run"] = stack_image("some/run", top_layer="run-top-layer", identifier="run-digest")
    return fetcher


@pytest.fixture
def builder_toml(tmp_path):
    """A builder.toml with a local buildpack directory and lifecycle archive."""
    make_buildpack(tmp_path / "buildpacks", "bp.one", "1.2.3")
    lifecycle = make_lifecycle(tmp_path / "lifecycle")
    path = tmp_path / "builder.toml"
    path.write_text(f"""
description = "Integration builder"

[[buildpacks]]
id = "bp.one"
uri = "buildpacks/bp.one-1.2.3"

[[order]]
[[order.group]]
id = "bp.one"

[stack]
id = "some.stack.id"
build-image = "some/build"
run-image = "some/run"
run-image-mirrors = ["example.com/some/run"]

[lifecycle]
uri = "{lifecycle}"
""")
    return path


def _invoke(runner, args, client=None):
    obj = {} if client is None else {'client': client}
    return runner.invoke(cli, args, obj=obj)


class TestHelp:
    """Tests for the command listing."""

    def test_cli_help(self, runner):
        result = _invoke(runner, ['--help'])
        assert result.exit_code == 0
        for command in ['create-builder', 'inspect-builder', 'rebase', 'set-default-builder', 'set-run-image-mirrors']:
            assert command in result.output

    def test_create_builder_requires_config(self, runner):
        result = _invoke(runner, ['create-builder', 'some/builder'])
        assert result.exit_code == 2
        assert '--builder-config' in result.output


class TestCreateBuilder:
    """Tests for create-builder and inspect-builder."""

    def test_create_and_inspect(self, runner, bpack_home, images, builder_toml, tmp_path):
        client = Client(images, Downloader(str(tmp_path / "cache")), ClientConfig())

        result = _invoke(runner, ['create-builder', 'some/builder', '-b', str(builder_toml)], client)

        assert result.exit_code == 0, result.output
        assert 'Successfully created builder image some/builder' in result.output
        builder = images.local_images["some/build"]
        assert builder.name() == "some/builder"
        assert builder.saved_names == ["some/builder"]
        metadata = json.loads(builder.label(BUILDER_METADATA_LABEL))
        assert metadata["description"] == "Integration builder"
        assert metadata["buildpacks"] == [{"id": "bp.one", "version": "1.2.3", "latest": True}]

        images.local_images["some/builder"] = builder
        result = _invoke(runner, ['inspect-builder', 'some/builder'], client)

        assert result.exit_code == 0, result.output
        assert 'Remote\n------\n\nNot present' in result.output
        assert 'Description: Integration builder' in result.output
        assert 'Stack: some.stack.id' in result.output
        assert 'example.com/some/run' in result.output
        assert 'bp.one@1.2.3' in result.output

    def test_missing_config_file(self, runner, bpack_home, images, tmp_path):
        client = Client(images, Downloader(str(tmp_path / "cache")), ClientConfig())
        result = _invoke(runner, ['create-builder', 'some/builder', '-b', str(tmp_path / "missing.toml")], client)
        assert result.exit_code == 1
        assert 'ERROR: reading builder config' in result.output

    def test_stack_mismatch(self, runner, bpack_home, images, builder_toml, tmp_path):
        images.local_images["some/run"] = stack_image("some/run", "other.stack")
        client = Client(images, Downloader(str(tmp_path / "cache")), ClientConfig())

        result = _invoke(runner, ['create-builder', 'some/builder', '-b', str(builder_toml)], client)

        assert result.exit_code == 1
        assert "ERROR: stack 'some.stack.id' from builder config is incompatible" in result.output
        assert not images.local_images["some/build"].saved


class TestInspectBuilder:
    """Tests for inspect-builder without a builder image."""

    def test_no_default_builder(self, runner, bpack_home, images):
        result = _invoke(runner, ['inspect-builder'], Client(images, config=ClientConfig()))
        assert result.exit_code == 1
        assert images.calls == []

    def test_uses_default_builder(self, runner, bpack_home, images):
        assert _invoke(runner, ['set-default-builder', 'some/builder']).exit_code == 0

        result = _invoke(runner, ['inspect-builder'], Client(images, config=ClientConfig()))

        assert result.exit_code == 0, result.output
        assert [call.name for call in images.calls] == ["some/builder", "some/builder"]
        assert result.output.count('Not present') == 2

    def test_section_errors_are_reported(self, runner, bpack_home, images):
        images.local_images["some/image"] = stack_image("some/image")
        result = _invoke(runner, ['inspect-builder', 'some/image'], Client(images, config=ClientConfig()))
        assert result.exit_code == 0
        assert "ERROR: invalid builder 'some/image'" in result.output


class TestConfigCommands:
    """Tests for the commands writing the client configuration."""

    def test_set_default_builder(self, runner, bpack_home):
        result = _invoke(runner, ['set-default-builder', 'some/builder'])
        assert result.exit_code == 0
        assert 'Builder some/builder is now the default builder' in result.output
        assert read_config().default_builder_image == "some/builder"

    def test_set_run_image_mirrors(self, runner, bpack_home):
        result = _invoke(runner, ['set-run-image-mirrors', 'some/run', '-m', 'example.com/some/run',
                                  '--mirror', 'gcr.io/some/run'])
        assert result.exit_code == 0
        assert 'Run Image some/run configured with mirror example.com/some/run' in result.output
        assert 'Run Image some/run configured with mirror gcr.io/some/run' in result.output
        assert read_config().mirrors() == {"some/run": ["example.com/some/run", "gcr.io/some/run"]}

    def test_set_run_image_mirrors_requires_mirror(self, runner, bpack_home):
        result = _invoke(runner, ['set-run-image-mirrors', 'some/run'])
        assert result.exit_code == 2

    def test_corrupt_config(self, runner, bpack_home):
        bpack_home.mkdir(parents=True)
        (bpack_home / "config.yml").write_text("run_images: [unclosed\n")
        result = _invoke(runner, ['set-default-builder', 'some/builder'])
        assert result.exit_code == 1
        assert 'ERROR: parsing config' in result.output


class TestRebase:
    """Tests for the rebase command."""

    @pytest.fixture
    def app_image(self, images):
        image = FakeImage("example.com/some/app", identifier="app-digest", labels={
            STACK_ID_LABEL: "some.stack.id",
            LIFECYCLE_METADATA_LABEL: '{"stack":{"runImage":{"image":"some/run"}}}',
        })
        images.local_images["example.com/some/app"] = image
        return image

    def test_rebase(self, runner, bpack_home, images, app_image):
        result = _invoke(runner, ['rebase', 'example.com/some/app', '--no-pull'], Client(images, config=ClientConfig()))

        assert result.exit_code == 0, result.output
        assert 'Successfully rebased image example.com/some/app' in result.output
        assert app_image.base() == "some/run"
        assert all(call.daemon and not call.pull for call in images.calls)

    def test_configured_mirror(self, runner, bpack_home, images, app_image):
        """Test mirrors set through the CLI are used by a later rebase."""
        images.local_images["example.com/some/run"] = stack_image(
            "example.com/some/run", top_layer="mirror-top-layer", identifier="mirror-digest")
        assert _invoke(runner, ['set-run-image-mirrors', 'some/run', '-m', 'example.com/some/run']).exit_code == 0

        result = _invoke(runner, ['rebase', 'example.com/some/app'], Client(images))

        assert result.exit_code == 0, result.output
        assert app_image.base() == "example.com/some/run"
        assert '"reference":"mirror-digest"' in app_image.label(LIFECYCLE_METADATA_LABEL)

    def test_run_image_option(self, runner, bpack_home, images, app_image):
        images.local_images["custom/run"] = stack_image("custom/run")
        result = _invoke(runner, ['rebase', 'example.com/some/app', '--run-image', 'custom/run'],
                         Client(images, config=ClientConfig()))
        assert result.exit_code == 0, result.output
        assert app_image.base() == "custom/run"

    def test_publish(self, runner, bpack_home, images, app_image):
        images.remote_images["example.com/some/app"] = app_image
        images.remote_images["some/run"] = images.local_images["some/run"]

        result = _invoke(runner, ['rebase', 'example.com/some/app', '--publish'],
                         Client(images, config=ClientConfig()))

        assert result.exit_code == 0, result.output
        assert all(not call.daemon for call in images.calls)

    def test_missing_image(self, runner, bpack_home, images):
        result = _invoke(runner, ['rebase', 'some/missing'], Client(images, config=ClientConfig()))
        assert result.exit_code == 1
        assert "ERROR: image 'some/missing' does not exist on the daemon" in result.output

    def test_unexpected_errors_are_not_swallowed(self, runner, bpack_home, images, app_image):
        images.errors["some/run"] = RuntimeError("boom")
        result = _invoke(runner, ['rebase', 'example.com/some/app'], Client(images, config=ClientConfig()))
        assert result.exit_code == 1
        assert isinstance(result.exception, RuntimeError)
        assert not isinstance(result.exception, BpackError)
