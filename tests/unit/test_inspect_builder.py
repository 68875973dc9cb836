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
Unit tests for builder inspection.
"""
import pytest

from bpack.BUILDERS.inspect_builder import inspect_builder
from bpack.errors import ImageSourceError, InvalidBuilderError
from bpack.MODELS.image_metadata import BUILDER_METADATA_LABEL

from fakes import stack_image

BUILDER_METADATA = (
    '{"description":"Some description",'
    '"stack":{"runImage":{"image":"some/run","mirrors":["gcr.io/some/run"]}},'
    '"buildpacks":[{"id":"bp.one","version":"1.0.0","latest":true}],'
    '"groups":[{"buildpacks":[{"id":"bp.one","version":"1.0.0"}]}],'
    '"lifecycle":{"version":"0.4.0","api":{"buildpack":"0.2","platform":"0.2"}},'
    '"createdBy":{"name":"bpack","version":"0.1.0"}}'
)


@pytest.fixture
def builder_image():
    image = stack_image("some/builder")
    image.set_label(BUILDER_METADATA_LABEL, BUILDER_METADATA)
    return image


class TestInspectBuilder:
    """Tests for inspect_builder."""

    @pytest.mark.parametrize("daemon", [True, False])
    def test_info(self, fetcher, builder_image, daemon):
        if daemon:
            fetcher.local_images["some/builder"] = builder_image
        else:
            fetcher.remote_images["some/builder"] = builder_image

        info = inspect_builder(fetcher, "some/builder", daemon)

        assert info.description == "Some description"
        assert info.stack == "some.stack.id"
        assert info.run_image == "some/run"
        assert info.run_image_mirrors == ["gcr.io/some/run"]
        assert [(bp.id, bp.version, bp.latest) for bp in info.buildpacks] == [("bp.one", "1.0.0", True)]
        assert info.groups[0].buildpacks[0].id == "bp.one"
        assert info.lifecycle.version == "0.4.0"
        assert info.lifecycle.api.platform == "0.2"
        assert info.created_by.name == "bpack"

    def test_never_pulls(self, fetcher, builder_image):
        fetcher.local_images["some/builder"] = builder_image
        inspect_builder(fetcher, "some/builder", True)
        assert fetcher.calls == [("some/builder", True, False)]

    def test_not_found(self, fetcher):
        assert inspect_builder(fetcher, "some/builder", True) is None
        assert inspect_builder(fetcher, "some/builder", False) is None

    def test_not_a_builder(self, fetcher):
        fetcher.local_images["some/image"] = stack_image("some/image")
        with pytest.raises(InvalidBuilderError, match="invalid builder 'some/image'"):
            inspect_builder(fetcher, "some/image", True)

    def test_fetch_error(self, fetcher):
        fetcher.errors["some/builder"] = ImageSourceError("connection refused")
        with pytest.raises(ImageSourceError):
            inspect_builder(fetcher, "some/builder", False)

    def test_null_lists(self, fetcher):
        """Test null buildpack, group and mirror lists read as empty."""
        image = stack_image("some/builder")
        image.set_label(BUILDER_METADATA_LABEL, (
            '{"description":"","stack":{"runImage":{"image":"some/run","mirrors":null}},'
            '"buildpacks":null,"groups":[{"buildpacks":null}],'
            '"lifecycle":{"version":"0.4.0","api":{"buildpack":"0.2","platform":"0.2"}}}'
        ))
        fetcher.local_images["some/builder"] = image

        info = inspect_builder(fetcher, "some/builder", True)

        assert info.run_image_mirrors == []
        assert info.buildpacks == []
        assert info.groups[0].buildpacks == []
