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
Choosing the run image an application image should be rebased onto.

Candidates are preferred when they live on the same registry as the
application image, so that a rebase never crosses registries when a mirror
on the local registry is available.
"""
from enum import Enum
from typing import Dict, List, Mapping, NamedTuple, Optional, Sequence

from ..errors import MissingRunImageError
from ..REGISTRY.image_reference import domain_of


class RunImageSource(str, Enum):
    OVERRIDE = "override"
    CONFIGURED_MIRROR = "locally configured mirror"
    LABEL_MIRROR = "image metadata mirror"
    PRIMARY = "image metadata"


class RunImageSelection(NamedTuple):
    reference: str
    source: RunImageSource


def _candidates(label_run_image: str, label_mirrors: Sequence[str],
                additional_mirrors: Mapping[str, Sequence[str]]) -> List[RunImageSelection]:
    candidates = [
        RunImageSelection(m, RunImageSource.CONFIGURED_MIRROR)
        for m in additional_mirrors.get(label_run_image, [])
    ]
    candidates += [RunImageSelection(m, RunImageSource.LABEL_MIRROR) for m in label_mirrors]
    if label_run_image:
        candidates.append(RunImageSelection(label_run_image, RunImageSource.PRIMARY))

    seen = set()
    unique = []
    for candidate in candidates:
        if candidate.reference and candidate.reference not in seen:
            seen.add(candidate.reference)
            unique.append(candidate)
    return unique


def select_run_image(repo_name: str, label_run_image: str, label_mirrors: Sequence[str],
                     override: str = "",
                     additional_mirrors: Optional[Mapping[str, Sequence[str]]] = None) -> RunImageSelection:
    """
    Pick the run image and report where the choice came from.

    Args:
        repo_name: Application image reference
        label_run_image: Primary run image recorded on the application image
        label_mirrors: Mirrors recorded on the application image
        override: Run image requested explicitly; wins unconditionally
        additional_mirrors: Locally configured mirrors, keyed by primary run image

    Raises:
        MissingRunImageError: If no run image is declared anywhere
    """
    if override:
        return RunImageSelection(override, RunImageSource.OVERRIDE)

    try:
        app_domain = domain_of(repo_name)
    except ValueError:
        app_domain = None

    if app_domain is not None:
        for candidate in _candidates(label_run_image, label_mirrors, additional_mirrors or {}):
            try:
                if domain_of(candidate.reference) == app_domain:
                    return candidate
            except ValueError:
                continue

    if label_run_image:
        return RunImageSelection(label_run_image, RunImageSource.PRIMARY)

    raise MissingRunImageError()


def resolve_run_image(repo_name: str, label_run_image: str, label_mirrors: Sequence[str],
                      override: str = "",
                      additional_mirrors: Optional[Dict[str, List[str]]] = None) -> str:
    """
    Pick the run image reference for a rebase.

    A pure function of its inputs: the override if given, else the first of
    (configured mirrors, label mirrors, primary) on the application's
    registry, else the primary run image.

    Raises:
        MissingRunImageError: If no run image is declared anywhere
    """
    return select_run_image(repo_name, label_run_image, label_mirrors, override, additional_mirrors).reference
