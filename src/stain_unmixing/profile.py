# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Stain profiles: the named result of an estimation run.

A profile is immutable.  Its stain vectors are normalized on construction
(a zero vector stays zero), so every stored vector has unit length.
Reading and writing profile files is left to callers; :meth:`StainProfile.from_mapping`
and :meth:`StainProfile.to_mapping` convert to and from plain dictionaries.
"""

from __future__ import annotations

import dataclasses
from types import MappingProxyType
from typing import Any, Mapping, Sequence

import numpy as np
from numpy.typing import NDArray

from stain_unmixing.parameters import (
    ALGORITHMS,
    SeparationAlgorithm,
    SeparationParameters,
    algorithm_from_name,
)
from stain_unmixing.stain_math import normalize_rows


@dataclasses.dataclass(frozen=True)
class Stain:
    """A named stain and its unit OD-space vector."""

    name: str
    vector: tuple[float, float, float]

    def __post_init__(self):
        v = np.asarray(self.vector, dtype=np.float64).ravel()
        if v.size != 3:
            msg = f"stain {self.name!r} needs a 3-component vector, got {v.size}"
            raise ValueError(msg)
        v = normalize_rows(v)
        object.__setattr__(self, "vector", tuple(float(x) for x in v))


@dataclasses.dataclass(frozen=True)
class StainProfile:
    """Name, stains, algorithm and algorithm parameters of one estimation."""

    name: str
    stains: tuple[Stain, ...]
    algorithm: SeparationAlgorithm
    parameters: Mapping[str, Any] = dataclasses.field(default_factory=dict)

    def __post_init__(self):
        if not 1 <= len(self.stains) <= 3:
            msg = f"a stain profile holds 1 to 3 stains, got {len(self.stains)}"
            raise ValueError(msg)
        object.__setattr__(self, "stains", tuple(self.stains))
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))

    @property
    def number_of_stains(self) -> int:
        return len(self.stains)

    @property
    def algorithm_name(self) -> str:
        return ALGORITHMS[self.algorithm].name

    @property
    def stain_matrix(self) -> NDArray[np.float64]:
        """``(N, 3)`` matrix of the stain vectors, one per row."""
        return np.array([s.vector for s in self.stains], dtype=np.float64)

    @classmethod
    def from_matrix(
        cls,
        name: str,
        matrix: NDArray,
        params: SeparationParameters,
        stain_names: Sequence[str] | None = None,
    ) -> StainProfile:
        """Build a profile from an ``(N, 3)`` stain matrix and its parameters."""
        names = list(stain_names if stain_names is not None else params.stain_names)
        rows = np.asarray(matrix, dtype=np.float64).reshape(-1, 3)
        names += [f"Stain {i + 1}" for i in range(len(names), rows.shape[0])]
        stains = tuple(Stain(names[i], tuple(row)) for i, row in enumerate(rows))
        return cls(name, stains, params.algorithm, params.algorithm_parameters())

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> StainProfile:
        """Read a profile from its dictionary form.

        Expected keys are ``name``, ``algorithm`` (display name or enum
        value), ``stains`` (a list of ``{"name": ..., "rgb": [r, g, b]}``) and
        optionally ``parameters``.  When ``numberOfStains`` is present only
        that many stains are read.

        :raises ValueError: If the algorithm is unknown, no stain is given or
            a stain vector does not have three components.
        """
        algorithm = algorithm_from_name(str(data.get("algorithm", "")))
        if algorithm is None:
            msg = f"unknown stain separation algorithm {data.get('algorithm')!r}"
            raise ValueError(msg)
        entries = list(data.get("stains", ()))
        if "numberOfStains" in data:
            entries = entries[: int(data["numberOfStains"])]
        stains = tuple(Stain(str(e.get("name", "")), tuple(e["rgb"])) for e in entries)
        return cls(
            str(data.get("name", "")),
            stains,
            algorithm,
            dict(data.get("parameters", {})),
        )

    def to_mapping(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "numberOfStains": self.number_of_stains,
            "stains": [{"name": s.name, "rgb": list(s.vector)} for s in self.stains],
            "algorithm": self.algorithm_name,
            "parameters": dict(self.parameters),
        }

    def report(self) -> str:
        """Human-readable summary of the profile."""
        lines = [
            f"Stain profile: {self.name}",
            f"Number of stains: {self.number_of_stains}",
        ]
        for i, stain in enumerate(self.stains):
            r, g, b = stain.vector
            lines.append(f"Stain {i + 1} ({stain.name}): R {r:.4f}, G {g:.4f}, B {b:.4f}")
        lines.append(f"Stain separation algorithm: {self.algorithm_name}")
        for key, value in self.parameters.items():
            lines.append(f"  {key}: {value}")
        return "\n".join(lines)
