"""
FunctionServiceCache - in-memory index of live function services.

Three indices over the same population:
- by_function: CacheKeyUR -> FuncSvc (authoritative)
- by_address: address -> FunctionMeta (reverse lookup for activity touch)
- by_function_uid: uid -> FunctionMeta (stable across resource-version churn)

Touch/list/log requests are serialized through a single consumer task that
drains an asyncio.Queue in arrival order. Point lookups, add and delete go
straight to the indices and are not linearized against queued requests.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from controlplane.common.core.cache import Cache

from ..core.exceptions import NameExistsError, NotFoundError
from ..models.function import FunctionMeta
from ..models.funcsvc import CacheKeyUR, CacheKeyURG, FuncSvc
from .pool_cache import CpuQuantity, PoolCache, PoolEntry

logger = logging.getLogger("executor.fscache")


class FscRequestType(Enum):
    TOUCH = "touch"
    LISTOLD = "listold"
    LOG = "log"
    LISTOLDPOOL = "listoldpool"


@dataclass
class FscRequest:
    request_type: FscRequestType
    reply: asyncio.Future
    address: str = ""
    age: float = 0.0


@dataclass
class FscResponse:
    objects: List[FuncSvc] = field(default_factory=list)


class FunctionServiceCache:
    def __init__(self, dump_dir: Optional[str] = None):
        self.by_function: Cache[CacheKeyUR, FuncSvc] = Cache()
        self.by_address: Cache[str, FunctionMeta] = Cache()
        self.by_function_uid: Cache[str, FunctionMeta] = Cache()
        self.pool_cache = PoolCache()
        self.dump_dir = dump_dir
        self._requests: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Request worker
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the request worker."""
        if self._task is not None and not self._task.done():
            return
        self._requests = asyncio.Queue()
        self._task = asyncio.create_task(self._service())
        logger.debug("Function service cache worker started")

    async def stop(self) -> None:
        """Stop the request worker."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.debug("Function service cache worker stopped")

    async def _request(self, request_type: FscRequestType, **kwargs: Any) -> FscResponse:
        await self.start()
        reply = asyncio.get_running_loop().create_future()
        await self._requests.put(FscRequest(request_type=request_type, reply=reply, **kwargs))
        return await reply

    async def _service(self) -> None:
        while True:
            req: FscRequest = await self._requests.get()
            try:
                resp = self._handle(req)
            except Exception as e:
                if not req.reply.done():
                    req.reply.set_exception(e)
            else:
                if not req.reply.done():
                    req.reply.set_result(resp)
            finally:
                self._requests.task_done()

    def _handle(self, req: FscRequest) -> FscResponse:
        resp = FscResponse()
        if req.request_type == FscRequestType.TOUCH:
            self._touch_by_address(req.address)
        elif req.request_type == FscRequestType.LISTOLD:
            now = time.time()
            for meta in self.by_function_uid.copy().values():
                try:
                    fsvc = self.by_function.get(CacheKeyUR.from_meta(meta))
                except NotFoundError:
                    # Deleted concurrently through the unqueued path.
                    continue
                if now - fsvc.atime > req.age:
                    resp.objects.append(fsvc.copy())
        elif req.request_type == FscRequestType.LOG:
            info = []
            entries = self.by_function.copy()
            for key, fsvc in entries.items():
                for obj in fsvc.kubernetes_objects:
                    info.append(f"{key}\t{obj.kind}\t{obj.name}")
            logger.info(
                "function service cache", extra={"item_count": len(entries), "cache": info}
            )
        elif req.request_type == FscRequestType.LISTOLDPOOL:
            now = time.time()
            resp.objects = [
                fsvc
                for fsvc in self.pool_cache.list_available_value()
                if now - fsvc.atime > req.age
            ]
        return resp

    def _touch_by_address(self, address: str) -> None:
        meta = self.by_address.get(address)
        fsvc = self.by_function.get(CacheKeyUR.from_meta(meta))
        fsvc.atime = time.time()

    # ------------------------------------------------------------------
    # Point operations
    # ------------------------------------------------------------------

    def get_by_function(self, meta: FunctionMeta) -> FuncSvc:
        """
        Get a function service by function key and refresh its access time.

        Raises:
            NotFoundError: not cached
        """
        fsvc = self.by_function.get(CacheKeyUR.from_meta(meta))
        fsvc.atime = time.time()
        return fsvc.copy()

    def get_by_function_uid(self, uid: str) -> FuncSvc:
        """
        Get a function service by function UID and refresh its access time.

        Raises:
            NotFoundError: not cached
        """
        meta = self.by_function_uid.get(uid)
        fsvc = self.by_function.get(CacheKeyUR.from_meta(meta))
        fsvc.atime = time.time()
        return fsvc.copy()

    async def add(self, fsvc: FuncSvc) -> Optional[FuncSvc]:
        """
        Add a function service unless its function key is already cached.

        Returns:
            None when inserted; a copy of the existing entry when another
            caller won the race (its access time is refreshed).
        """
        entry = fsvc.copy()
        now = time.time()
        entry.ctime = now
        entry.atime = now
        try:
            self.by_function.set(CacheKeyUR.from_meta(entry.function), entry)
        except NameExistsError as e:
            existing: FuncSvc = e.existing
            try:
                await self.touch_by_address(existing.address)
            except NotFoundError:
                logger.debug(f"Address {existing.address} not indexed; skipping touch")
            return existing.copy()

        # Multiple specializations may race for the same address/uid.
        self._set_secondary(self.by_address, entry.address, entry)
        self._set_secondary(self.by_function_uid, entry.function.uid, entry)
        return None

    def _set_secondary(self, index: Cache, key: str, fsvc: FuncSvc) -> None:
        try:
            index.set(key, fsvc.function.model_copy(deep=True))
        except NameExistsError:
            logger.debug(
                f"Secondary index already holds {key}",
                extra={"function": fsvc.function.name, "address": fsvc.address},
            )
        except Exception as e:
            logger.error(
                f"error caching function service under {key}: {e}",
                extra={"function": fsvc.function.name},
            )

    async def touch_by_address(self, address: str) -> None:
        """
        Refresh the access time of the entry owning an address.

        Raises:
            NotFoundError: address not cached
        """
        await self._request(FscRequestType.TOUCH, address=address)

    def delete_entry(self, fsvc: FuncSvc) -> None:
        """Remove an entry from all indices. Missing keys are logged, not raised."""
        msg = "error deleting function service"
        extra = {"function": fsvc.function.name, "namespace": fsvc.function.namespace}
        for index, key in (
            (self.by_function, CacheKeyUR.from_meta(fsvc.function)),
            (self.by_address, fsvc.address),
            (self.by_function_uid, fsvc.function.uid),
        ):
            try:
                index.delete(key)
            except NotFoundError as e:
                logger.warning(f"{msg}: {e}", extra=extra)

        logger.info(
            "function service removed from cache",
            extra={**extra, "lifetime_seconds": round(fsvc.atime - fsvc.ctime, 3)},
        )

    def delete_old(self, fsvc: FuncSvc, min_age: float) -> bool:
        """Delete the entry if it has been idle for at least min_age seconds."""
        if time.time() - fsvc.atime < min_age:
            return False
        self.delete_entry(fsvc)
        return True

    async def list_old(self, age: float) -> List[FuncSvc]:
        """Entries idle for longer than age seconds."""
        resp = await self._request(FscRequestType.LISTOLD, age=age)
        return resp.objects

    async def list_old_for_pool(self, age: float) -> List[FuncSvc]:
        """Idle pool entries unused for longer than age seconds."""
        resp = await self._request(FscRequestType.LISTOLDPOOL, age=age)
        return resp.objects

    async def log(self) -> None:
        logger.info("--- FunctionService Cache Contents")
        await self._request(FscRequestType.LOG)
        logger.info("--- FunctionService Cache Contents End")

    # ------------------------------------------------------------------
    # Pool cache pass-throughs
    # ------------------------------------------------------------------

    def add_func(self, fsvc: FuncSvc, requests_per_pod: int, svcs_retain: int) -> List[PoolEntry]:
        return self.pool_cache.set_svc_value(
            CacheKeyURG.from_meta(fsvc.function),
            fsvc.address,
            fsvc,
            fsvc.cpu_limit,
            requests_per_pod,
            svcs_retain,
        )

    def get_func_svc(self, meta: FunctionMeta, requests_per_pod: int, concurrency: int) -> FuncSvc:
        """
        Raises:
            NotFoundError: specialize a new address (slot reserved)
            ConcurrencyLimitError: pool is at its concurrency limit
        """
        return self.pool_cache.get_svc_value(
            CacheKeyURG.from_meta(meta), requests_per_pod, concurrency
        )

    def set_cpu_utilization(self, key: CacheKeyURG, address: str, cpu_usage: CpuQuantity) -> None:
        self.pool_cache.set_cpu_utilization(key, address, cpu_usage)

    def mark_available(self, key: CacheKeyURG, address: str) -> List[PoolEntry]:
        return self.pool_cache.mark_available(key, address)

    def mark_specialization_failure(self, key: CacheKeyURG, address: Optional[str] = None) -> None:
        self.pool_cache.mark_specialization_failure(key, address)

    def mark_func_deleted(self, key: CacheKeyURG) -> List[PoolEntry]:
        return self.pool_cache.mark_func_deleted(key)

    def delete_function_svc(self, fsvc: FuncSvc) -> None:
        try:
            self.pool_cache.delete_value(CacheKeyURG.from_meta(fsvc.function), fsvc.address)
        except NotFoundError as e:
            logger.error(
                f"error deleting function service: {e}",
                extra={"function": fsvc.function.name, "address": fsvc.address},
            )

    def delete_old_pool_cache(self, fsvc: FuncSvc, min_age: float) -> bool:
        if time.time() - fsvc.atime < min_age:
            return False
        self.delete_function_svc(fsvc)
        return True

    # ------------------------------------------------------------------
    # Debug
    # ------------------------------------------------------------------

    def dump_debug_info(self) -> str:
        """Write pool groups to a dump file and return its path."""
        dump_dir = self.dump_dir or os.getcwd()
        os.makedirs(dump_dir, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
        path = os.path.join(dump_dir, f"executor-dump-{stamp}.txt")
        logger.info(f"dumping function service to {path}")
        with open(path, "w", encoding="utf-8") as f:
            self.pool_cache.log_fn_svc_group(f)
        logger.info("dumped function service")
        return path
