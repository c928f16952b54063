# src/dagsched/engine/pool.py
from __future__ import annotations

import threading
from typing import Optional

from dagsched.domain.errors import ResourceLedgerError
from dagsched.domain.models import ResourceSet
from dagsched.logging import get_logger

_LOG = get_logger(__name__)


class ResourcePool:
    """
    Total capacity plus a ledger of what RUNNING tasks currently hold.

    Concurrency semantics:
    - Writers (reserve/release) serialize on a lock.
    - The ledger is published as an immutable (reserved, total) pair, so
      readers such as the status reporter never take the lock and never
      see a torn read.
    """

    def __init__(self, total: Optional[ResourceSet] = None) -> None:
        total = total if total is not None else ResourceSet.infinite()
        self._lock = threading.Lock()
        self._state: tuple[ResourceSet, ResourceSet] = (ResourceSet.none(), total)

    @classmethod
    def infinite(cls) -> ResourcePool:
        return cls(ResourceSet.infinite())

    @property
    def total(self) -> ResourceSet:
        return self._state[1]

    @property
    def reserved(self) -> ResourceSet:
        return self._state[0]

    @property
    def available(self) -> ResourceSet:
        reserved, total = self._state
        return total - reserved

    def snapshot(self) -> tuple[ResourceSet, ResourceSet]:
        """Point-in-time (reserved, total)."""
        return self._state

    def can_ever_fit(self, amount: ResourceSet) -> bool:
        return amount.fits_within(self.total)

    def try_reserve(self, amount: ResourceSet) -> bool:
        """
        Reserves `amount` if every dimension fits; otherwise reserves nothing.
        """
        with self._lock:
            reserved, total = self._state
            wanted = reserved + amount
            if not wanted.fits_within(total):
                return False
            self._state = (wanted, total)
            return True

    def release(self, amount: ResourceSet) -> None:
        """
        Returns a previously reserved amount.

        Raises ResourceLedgerError (and leaves the ledger untouched) if the
        release would drive any dimension below zero.
        """
        with self._lock:
            reserved, total = self._state
            try:
                remaining = reserved - amount
            except ValueError as e:
                _LOG.error("Resource ledger inconsistency: release %s from %s", amount.describe(), reserved.describe())
                raise ResourceLedgerError(
                    "Release would drive the resource ledger negative",
                    details={"reserved": reserved.describe(), "release": amount.describe()},
                ) from e
            self._state = (remaining, total)

    def __repr__(self) -> str:
        reserved, total = self._state
        return f"ResourcePool(reserved=({reserved.describe()}), total=({total.describe()}))"
