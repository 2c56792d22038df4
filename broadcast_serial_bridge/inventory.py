from __future__ import annotations

import logging
import threading
from collections import abc
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional

from .errors import InvalidParameter
from .interpreter import BinUpdate

_logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Cassette:
    """Metadata of the cassette held in a bin."""
    id: str
    type: str = "unknown"
    title: str = ""
    duration: str = "00:00:00"
    category: str = "general"
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CartridgeBin:
    slot: int
    occupied: bool = False
    cassette: Optional[Cassette] = None
    last_accessed: Optional[str] = None


@dataclass(frozen=True)
class OccupancyStats:
    total: int
    occupied: int
    empty: int
    version: int
    last_updated: Optional[str]

    @property
    def occupancy_rate(self) -> float:
        return 100.0 * self.occupied / self.total if self.total else 0.0


class BinOccupancy:
    """
    Occupancy of the cartridge bins of one FlexiCart.
    The slot count is fixed at construction; slots are numbered 1..slot_count.
    Args:
        slot_count (int): Number of bins
    """

    def __init__(self, slot_count: int = 360) -> None:
        if int(slot_count) < 1:
            raise InvalidParameter(f"slot count must be at least 1: {slot_count}")
        self.slot_count = int(slot_count)
        self._bins: Dict[int, CartridgeBin] = {i: CartridgeBin(slot=i) for i in range(1, self.slot_count + 1)}
        self._lock = threading.Lock()
        self.version = 1
        self.last_updated: Optional[str] = None

    def _check(self, slot: int) -> int:
        slot = int(slot)
        if not (1 <= slot <= self.slot_count):
            raise InvalidParameter(f"invalid bin number: {slot} (1..{self.slot_count})")
        return slot

    def set_cassette(self, slot: int, cassette: Optional[Cassette] = None) -> CartridgeBin:
        """
        Mark a bin occupied.
        Args:
            slot (int): Bin number
            cassette (Cassette, optional): Metadata; a placeholder id is used when omitted
        Returns:
            CartridgeBin: Updated bin
        Raises:
            InvalidParameter: If slot is outside 1..slot_count
        """
        slot = self._check(slot)
        with self._lock:
            b = CartridgeBin(slot=slot, occupied=True, cassette=cassette or Cassette(id=f"CART_{slot}"),
                             last_accessed=_now())
            self._bins[slot] = b
            self.version += 1
            self.last_updated = b.last_accessed
        return b

    def remove_cassette(self, slot: int) -> Optional[Cassette]:
        """Mark a bin empty and return the cassette it held, if any."""
        slot = self._check(slot)
        with self._lock:
            removed = self._bins[slot].cassette
            self._bins[slot] = CartridgeBin(slot=slot, last_accessed=_now())
            self.version += 1
            self.last_updated = self._bins[slot].last_accessed
        return removed

    def get(self, slot: int) -> CartridgeBin:
        return self._bins[self._check(slot)]

    def is_occupied(self, slot: int) -> bool:
        return self.get(slot).occupied

    def occupied_slots(self) -> List[int]:
        return [s for s, b in sorted(self._bins.items()) if b.occupied]

    def empty_slots(self) -> List[int]:
        return [s for s, b in sorted(self._bins.items()) if not b.occupied]

    def find_cassette(self, cassette_id: str) -> Optional[CartridgeBin]:
        for _, b in sorted(self._bins.items()):
            if b.occupied and b.cassette is not None and b.cassette.id == cassette_id:
                return b
        return None

    def search(self, *, title: Optional[str] = None, category: Optional[str] = None,
               type: Optional[str] = None) -> List[CartridgeBin]:
        out = []
        for _, b in sorted(self._bins.items()):
            c = b.cassette
            if not b.occupied or c is None:
                continue
            if title and title.lower() not in c.title.lower():
                continue
            if category and c.category != category:
                continue
            if type and c.type != type:
                continue
            out.append(b)
        return out

    def stats(self) -> OccupancyStats:
        occupied = len(self.occupied_slots())
        return OccupancyStats(total=self.slot_count, occupied=occupied, empty=self.slot_count - occupied,
                              version=self.version, last_updated=self.last_updated)

    def apply(self, update: BinUpdate) -> None:
        """
        Apply a decoded inventory reply.
        Cassette metadata of bins that stay occupied is kept.
        Slots beyond slot_count are ignored.
        """
        with self._lock:
            for slot in update.occupied:
                if 1 <= slot <= self.slot_count and not self._bins[slot].occupied:
                    self._bins[slot] = CartridgeBin(slot=slot, occupied=True, cassette=Cassette(id=f"CART_{slot}"))
            for slot in update.empty:
                if 1 <= slot <= self.slot_count and self._bins[slot].occupied:
                    self._bins[slot] = replace(self._bins[slot], occupied=False, cassette=None)
            ignored = [s for s in update.occupied + update.empty if s > self.slot_count]
            self.version += 1
            self.last_updated = _now()
        if ignored:
            _logger.debug("ignored %d slot(s) beyond %d", len(ignored), self.slot_count)


class DeviceInventory(abc.Mapping):
    """
    Read-only snapshot of channel id -> last known status.
    A new snapshot replaces the old one wholesale; entries are never patched.
    """

    def __init__(self, entries: Optional[Mapping[str, Any]] = None, *, taken_at: Optional[str] = None) -> None:
        self._entries = MappingProxyType(dict(entries or {}))
        self.taken_at = taken_at or _now()

    def __getitem__(self, key: str) -> Any:
        return self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"DeviceInventory({dict(self._entries)!r})"
