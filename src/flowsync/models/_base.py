"""Base model and shared value types for flowsync.

Every flowsync model inherits from :class:`FlowBaseModel` which provides:

* frozen instances, so snapshots can hand out entities without copying.
* A ``model_validator(mode="before")`` that strips placeholder values
  (``None``, ``""``, ``"--"``, NaN) so the field default is used, or the
  field is reported missing when it is required.

:class:`Position` is the 2D coordinate shared by units, signals and
incident waypoints.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

# Placeholder strings upstream sends for "not available".
_SENTINELS = frozenset({"", "--", "NaN", "nan"})


def clean_placeholders(values: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *values* without placeholder entries."""
    cleaned: dict[str, Any] = {}
    for key, value in values.items():
        if value is None:
            continue
        if isinstance(value, str) and value.strip() in _SENTINELS:
            continue
        if isinstance(value, float) and math.isnan(value):
            continue
        cleaned[key] = value
    return cleaned


class FlowBaseModel(BaseModel):
    """Base for flowsync models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _strip_placeholders(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        return clean_placeholders(values)


class Position(BaseModel):
    """A 2D coordinate.

    Accepts ``{"x": .., "y": ..}``, ``{"lat": .., "lng": ..}`` (longitude maps
    to ``x``) or a two-element ``[x, y]`` sequence.
    """

    model_config = ConfigDict(frozen=True)

    x: float
    y: float

    @model_validator(mode="before")
    @classmethod
    def _coerce_shapes(cls, value: Any) -> Any:
        if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
            if len(value) != 2:
                raise ValueError("position must have exactly two coordinates")
            return {"x": value[0], "y": value[1]}
        if isinstance(value, dict) and "x" not in value and "lat" in value:
            lng = value.get("lng", value.get("lon"))
            return {"x": lng, "y": value.get("lat")}
        return value

    @field_validator("x", "y")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("coordinate must be finite")
        return value

    def as_tuple(self) -> tuple[float, float]:
        return (self.x, self.y)
