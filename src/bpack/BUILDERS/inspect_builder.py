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
Reading back what an existing builder image contains.
"""
from typing import Optional

from ..errors import BpackError, NotFoundError
from ..MODELS.options import BuilderInfo
from ..REGISTRY.image import ImageFetcher
from .builder import Builder


def inspect_builder(fetcher: ImageFetcher, name: str, daemon: bool) -> Optional[BuilderInfo]:
    """
    Describe a builder image.

    :param fetcher: Where to look the image up.
    :param name: Builder image name.
    :param daemon: Look on the daemon rather than the registry. Never pulls.
    :return: The builder's description, or None if there is no such image.
    :raises InvalidBuilderError: If the image exists but is not a builder.
    """
    try:
        image = fetcher.fetch(name, daemon=daemon, pull=False)
    except NotFoundError:
        return None

    try:
        builder = Builder.get(image)
    except BpackError as e:
        raise e.wrap(f"invalid builder '{name}'")

    stack = builder.stack()
    return BuilderInfo(
        description=builder.description(),
        stack=builder.stack_id,
        run_image=stack.run_image.image,
        run_image_mirrors=list(stack.run_image.mirrors),
        buildpacks=builder.buildpacks(),
        groups=builder.groups(),
        lifecycle=builder.lifecycle_descriptor(),
        created_by=builder.created_by(),
    )
