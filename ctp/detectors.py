"""
ctp/detectors.py
----------------
Detector name resolution.

The parsers never hold a global detector table; they are handed anything with
a `resolve(name) -> (det_id, mask) | None` method. `StaticDetectorRegistry`
is the stock implementation backed by an ordered name list (index = id).
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Protocol, Tuple

from .config_loader import get_detector_names

INVALID_DET_ID = -1


class DetectorRegistry(Protocol):
    def resolve(self, name: str) -> Optional[Tuple[int, int]]:
        ...


class StaticDetectorRegistry:
    def __init__(self, names: Iterable[str]):
        self._names: List[str] = [str(n) for n in names]
        if len(set(self._names)) != len(self._names):
            raise ValueError("detector names must be unique")

    def resolve(self, name: str) -> Optional[Tuple[int, int]]:
        # exact match: callers decide about case normalization
        try:
            det_id = self._names.index(name)
        except ValueError:
            return None
        return det_id, 1 << det_id

    def name_of(self, det_id: int) -> Optional[str]:
        if 0 <= det_id < len(self._names):
            return self._names[det_id]
        return None


def default_registry() -> StaticDetectorRegistry:
    """Registry built from the configured detector list."""
    return StaticDetectorRegistry(get_detector_names())
