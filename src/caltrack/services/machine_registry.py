"""
Machine registry: fixed nominal dispense volume per machine.

The registry is built once at startup and handed to the record service.
It is never mutated, so readers need no locking.
"""

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional, Union

from ..utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_MACHINES: Dict[str, float] = {
    'DD50-1': 800, 'DD50-2': 800, 'DD100': 900, 'DD200-1': 1800, 'DD200-2': 1800, 'DD600': 3960,
    'DL2-1': 16, 'DL500-1': 5, 'DL500-2': 5, 'DL500-3': 5, 'DL500-4': 5,
    'DL250-1': 3.5, 'DL250-2': 3.5, 'DL250-3': 3.5, 'DL250-4': 3.5,
    'DL125-1': 2, 'DL125-2': 2, 'DL125-3': 2, 'DL125-4': 2,
    'RK3-1': 26, 'RK3-2': 26, 'RK3-3': 26, 'RK3-4': 26, 'RK3-5': 26, 'RK3-6': 26,
    'RK6-1': 44, 'RK6-2': 44, 'RK6-3': 44, 'RK6-4': 44, 'RK6-5': 44, 'RK6-6': 44,
    'LX4': 60, 'LX5': 60, 'LX6': 60, 'LX7': 60, 'LX8': 60, 'LX9': 60, 'LX10': 60,
    'LX11': 60, 'LX12': 60, 'LX13': 60, 'LX14': 60, 'LX15': 60, 'LX16': 60, 'LX17': 60,
    'A5': 225, 'B6': 225, 'B7': 225, 'A4': 145, 'B1': 225, 'B5': 145,
}


class MachineRegistry:
    """Read-only mapping of machine identifier to nominal volume."""

    def __init__(self, machines: Mapping[str, Union[int, float]]):
        validated: Dict[str, float] = {}
        for name, volume in machines.items():
            if not isinstance(name, str) or not name.strip():
                raise ConfigurationError(f"Invalid machine name: {name!r}")
            if isinstance(volume, bool) or not isinstance(volume, (int, float)) or volume <= 0:
                raise ConfigurationError(
                    f"Machine {name} must have a positive volume (got {volume!r})"
                )
            validated[name] = volume
        self._machines = MappingProxyType(validated)

    @classmethod
    def default(cls) -> "MachineRegistry":
        return cls(DEFAULT_MACHINES)

    @classmethod
    def from_file(cls, path: Path) -> "MachineRegistry":
        """Load a registry from a JSON object of name -> volume."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read machines file {path}: {e}") from e

        if not isinstance(data, dict) or not data:
            raise ConfigurationError(f"Machines file {path} must contain a non-empty JSON object")

        registry = cls(data)
        logger.info(f"Loaded {len(registry)} machines from {path}")
        return registry

    def lookup_volume(self, machine_id: Optional[str]) -> Optional[float]:
        if not machine_id:
            return None
        return self._machines.get(machine_id)

    def as_dict(self) -> Dict[str, float]:
        return dict(self._machines)

    def __contains__(self, machine_id: object) -> bool:
        return machine_id in self._machines

    def __iter__(self) -> Iterator[str]:
        return iter(self._machines)

    def __len__(self) -> int:
        return len(self._machines)

    def __repr__(self):
        return f"<MachineRegistry(machines={len(self._machines)})>"
