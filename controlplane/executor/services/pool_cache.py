"""
PoolCache - per-function pool of specialized addresses.

Used by executors that specialize warm instances instead of running one
deployment per function. Each function key owns a group of addresses with
per-address request accounting; idle addresses beyond `svcs_retain` are
evicted least-recently-available first.
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, TextIO, Union

from kubernetes.utils import parse_quantity

from ..core.exceptions import ConcurrencyLimitError, NotFoundError
from ..models.funcsvc import CacheKeyURG, FuncSvc

logger = logging.getLogger("executor.pool_cache")

CpuQuantity = Union[Decimal, str]


def _cpu(value: CpuQuantity) -> Decimal:
    """Accept a Decimal or a quantity string like "500m"."""
    if isinstance(value, Decimal):
        return value
    return parse_quantity(value)


class PoolEntryState(str, Enum):
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    SPECIALIZATION_FAILED = "specialization_failed"
    MARKED_DELETED = "marked_deleted"


LIVE_STATES = (PoolEntryState.AVAILABLE, PoolEntryState.ASSIGNED)


@dataclass
class PoolEntry:
    """One address inside a function's pool."""

    address: str
    fsvc: FuncSvc
    cpu_limit: Decimal = Decimal(0)
    cpu_usage: Decimal = Decimal(0)
    active_requests: int = 0
    state: PoolEntryState = PoolEntryState.AVAILABLE
    available_since: float = 0.0

    @property
    def idle(self) -> bool:
        return self.state == PoolEntryState.AVAILABLE

    def has_capacity(self, requests_per_pod: int) -> bool:
        if self.state not in LIVE_STATES:
            return False
        if self.active_requests >= requests_per_pod:
            return False
        if self.cpu_limit > 0 and self.cpu_usage >= self.cpu_limit:
            return False
        return True


@dataclass
class _FunctionGroup:
    # Ordered by availability: least-recently-available first.
    entries: "OrderedDict[str, PoolEntry]" = field(default_factory=OrderedDict)
    svc_waiting: int = 0
    requests_per_pod: int = 1
    svcs_retain: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock)


class PoolCache:
    """
    Per-function pool bookkeeping.

    Locking is per function key; the group map has its own lock. Callers only
    receive copies of FuncSvc records.
    """

    def __init__(self):
        self._groups: Dict[CacheKeyURG, _FunctionGroup] = {}
        self._lock = threading.Lock()

    def _group(self, key: CacheKeyURG, create: bool = False) -> Optional[_FunctionGroup]:
        with self._lock:
            group = self._groups.get(key)
            if group is None and create:
                group = _FunctionGroup()
                self._groups[key] = group
            return group

    def get_svc_value(self, key: CacheKeyURG, requests_per_pod: int, concurrency: int) -> FuncSvc:
        """
        Hand out an address that can take one more request.

        Raises:
            NotFoundError: nothing usable; a specialization slot was reserved
            ConcurrencyLimitError: nothing usable and no slot left
        """
        requests_per_pod = max(requests_per_pod, 1)
        group = self._group(key, create=True)
        with group.lock:
            group.requests_per_pod = requests_per_pod
            # Most recently available first; stale entries drift toward eviction.
            for entry in reversed(group.entries.values()):
                if not entry.has_capacity(requests_per_pod):
                    continue
                entry.active_requests += 1
                entry.state = PoolEntryState.ASSIGNED
                entry.fsvc.atime = time.time()
                return entry.fsvc.copy()

            live = sum(1 for e in group.entries.values() if e.state in LIVE_STATES)
            if live + group.svc_waiting < concurrency:
                group.svc_waiting += 1
                raise NotFoundError(f"no available address for function {key}")
            raise ConcurrencyLimitError(str(key), concurrency)

    def set_svc_value(
        self,
        key: CacheKeyURG,
        address: str,
        fsvc: FuncSvc,
        cpu_limit: CpuQuantity,
        requests_per_pod: int,
        svcs_retain: int,
    ) -> List[PoolEntry]:
        """
        Record a freshly specialized address, held by the caller that
        specialized it. Returns entries evicted by the retain limit.
        """
        requests_per_pod = max(requests_per_pod, 1)
        cpu_limit = _cpu(cpu_limit)
        now = time.time()
        group = self._group(key, create=True)
        with group.lock:
            group.requests_per_pod = requests_per_pod
            group.svcs_retain = svcs_retain

            entry = group.entries.get(address)
            if entry is None:
                entry = PoolEntry(address=address, fsvc=fsvc.copy(), cpu_limit=cpu_limit)
                group.entries[address] = entry
            else:
                entry.fsvc = fsvc.copy()
                entry.cpu_limit = cpu_limit
            entry.fsvc.ctime = entry.fsvc.ctime or now
            entry.fsvc.atime = now
            entry.active_requests += 1
            entry.state = PoolEntryState.ASSIGNED

            if group.svc_waiting > 0:
                group.svc_waiting -= 1
            return self._enforce_retain(key, group)

    def mark_available(self, key: CacheKeyURG, address: str) -> List[PoolEntry]:
        """Release one request on an address. Returns entries evicted by the retain limit."""
        group = self._group(key)
        if group is None:
            logger.debug(f"mark_available: function {key} not in pool cache")
            return []
        with group.lock:
            entry = group.entries.get(address)
            if entry is None or entry.state not in LIVE_STATES:
                logger.debug(f"mark_available: address {address} not live for {key}")
                return []
            if entry.active_requests > 0:
                entry.active_requests -= 1
            if entry.active_requests == 0:
                entry.state = PoolEntryState.AVAILABLE
                entry.available_since = time.time()
                group.entries.move_to_end(address)
            return self._enforce_retain(key, group)

    def _enforce_retain(self, key: CacheKeyURG, group: _FunctionGroup) -> List[PoolEntry]:
        # Caller holds group.lock. svcs_retain <= 0 means no cap.
        if group.svcs_retain <= 0:
            return []
        available = [e for e in group.entries.values() if e.state == PoolEntryState.AVAILABLE]
        excess = len(available) - group.svcs_retain
        evicted: List[PoolEntry] = []
        if excess <= 0:
            return evicted
        for entry in available[:excess]:
            entry.state = PoolEntryState.MARKED_DELETED
            del group.entries[entry.address]
            evicted.append(entry)
        if evicted:
            logger.info(
                f"Evicted {len(evicted)} idle addresses from {key} "
                f"(retain: {group.svcs_retain})"
            )
        return evicted

    def mark_specialization_failure(self, key: CacheKeyURG, address: Optional[str] = None) -> None:
        group = self._group(key)
        if group is None:
            return
        with group.lock:
            if group.svc_waiting > 0:
                group.svc_waiting -= 1
            if address is not None and address in group.entries:
                entry = group.entries[address]
                entry.state = PoolEntryState.SPECIALIZATION_FAILED
                entry.active_requests = 0

    def set_cpu_utilization(self, key: CacheKeyURG, address: str, cpu_usage: CpuQuantity) -> None:
        cpu_usage = _cpu(cpu_usage)
        group = self._group(key)
        if group is None:
            return
        with group.lock:
            entry = group.entries.get(address)
            if entry is not None:
                entry.cpu_usage = cpu_usage

    def mark_func_deleted(self, key: CacheKeyURG) -> List[PoolEntry]:
        """Forget a function; all its entries become MARKED_DELETED."""
        with self._lock:
            group = self._groups.pop(key, None)
        if group is None:
            return []
        with group.lock:
            entries = list(group.entries.values())
            for entry in entries:
                entry.state = PoolEntryState.MARKED_DELETED
            group.entries.clear()
            group.svc_waiting = 0
        return entries

    def delete_value(self, key: CacheKeyURG, address: str) -> None:
        group = self._group(key)
        if group is None:
            raise NotFoundError(f"function {key} not found in pool cache")
        with group.lock:
            if address not in group.entries:
                raise NotFoundError(f"address {address} not found for function {key}")
            del group.entries[address]
            empty = not group.entries and group.svc_waiting == 0
        if empty:
            with self._lock:
                if self._groups.get(key) is group:
                    del self._groups[key]

    def list_available_value(self) -> List[FuncSvc]:
        """Snapshot of AVAILABLE (idle) entries across all functions."""
        with self._lock:
            groups = list(self._groups.values())
        result: List[FuncSvc] = []
        for group in groups:
            with group.lock:
                result.extend(e.fsvc.copy() for e in group.entries.values() if e.idle)
        return result

    def entries(self, key: CacheKeyURG) -> List[PoolEntry]:
        """Detached copies of a function's entries (debugging/tests)."""
        group = self._group(key)
        if group is None:
            return []
        with group.lock:
            return [
                PoolEntry(
                    address=e.address,
                    fsvc=e.fsvc.copy(),
                    cpu_limit=e.cpu_limit,
                    cpu_usage=e.cpu_usage,
                    active_requests=e.active_requests,
                    state=e.state,
                    available_since=e.available_since,
                )
                for e in group.entries.values()
            ]

    def log_fn_svc_group(self, stream: TextIO) -> None:
        with self._lock:
            groups = list(self._groups.items())
        for key, group in groups:
            with group.lock:
                stream.write(f"function\t{key}\twaiting={group.svc_waiting}\n")
                for e in group.entries.values():
                    stream.write(
                        f"\t{e.address}\t{e.state.value}\tactive={e.active_requests}"
                        f"\tcpu={e.cpu_usage}/{e.cpu_limit}\n"
                    )
