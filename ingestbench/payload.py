"""Simulated sensor readings published once per cycle by each device."""
from __future__ import annotations

import json
import random
from typing import List, Optional, Tuple


class SensorPayload:
    """Fixed field names with a value buffer that is refilled in place every cycle."""

    def __init__(
        self,
        point_count: int,
        min_value: float,
        max_value: float,
        rng: Optional[random.Random] = None,
        prefix: str = "hum",
    ) -> None:
        if point_count < 1:
            raise ValueError("A payload needs at least one data point")
        if min_value > max_value:
            raise ValueError("min_value cannot exceed max_value")
        self.min_value = min_value
        self.max_value = max_value
        self._rng = rng or random.Random()
        self._names: List[str] = [f"{prefix}{index}" for index in range(1, point_count + 1)]
        self._values: List[float] = [0.0] * point_count

    def __len__(self) -> int:
        return len(self._names)

    @property
    def fields(self) -> List[Tuple[str, float]]:
        return list(zip(self._names, self._values))

    @property
    def values(self) -> List[float]:
        """The live value buffer, overwritten by every ``refresh``."""
        return self._values

    def refresh(self) -> None:
        uniform = self._rng.uniform
        values = self._values
        for index in range(len(values)):
            values[index] = uniform(self.min_value, self.max_value)

    def to_json(self) -> str:
        return json.dumps(dict(zip(self._names, self._values)), separators=(",", ":"))
