"""
FunctionWatcher - feeds Function add/update/delete events to the executor.

One blocking `kubernetes.watch` stream per namespace runs in a worker thread
and hands events to the event loop; a single consumer task dispatches them in
arrival order so handlers for one function never overlap.
"""

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from kubernetes import client, watch
from kubernetes.client.rest import ApiException

from ..models.function import Function
from .cluster_client import FUNCTION_GROUP, FUNCTION_PLURAL, FUNCTION_VERSION

if TYPE_CHECKING:
    from .container_manager import ContainerExecutor

logger = logging.getLogger("executor.watcher")

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"


class FunctionWatcher:
    def __init__(
        self,
        executor: "ContainerExecutor",
        namespaces: List[str],
        api_client: Optional[client.ApiClient] = None,
        watch_timeout: int = 300,
    ):
        self.executor = executor
        self.namespaces = namespaces
        self.custom = client.CustomObjectsApi(api_client)
        self.watch_timeout = watch_timeout
        # Last seen object per UID, the "old" side of an update.
        self.known: Dict[str, Function] = {}
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None
        self._threads: List[threading.Thread] = []
        self._stopping = threading.Event()
        self._watches: List[watch.Watch] = []

    async def start(self) -> None:
        """Start one stream thread per namespace plus the dispatch task."""
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._stopping.clear()
        self._task = asyncio.create_task(self._dispatch_loop())
        for namespace in self.namespaces:
            t = threading.Thread(
                target=self._stream, args=(namespace,), name=f"fn-watch-{namespace}", daemon=True
            )
            t.start()
            self._threads.append(t)
        logger.info(f"Function watcher started (namespaces: {self.namespaces})")

    async def stop(self) -> None:
        self._stopping.set()
        for w in self._watches:
            w.stop()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Function watcher stopped")

    def _stream(self, namespace: str) -> None:
        """Blocking watch loop; restarts the stream when it expires."""
        resource_version = None
        while not self._stopping.is_set():
            w = watch.Watch()
            self._watches.append(w)
            try:
                kwargs = {"timeout_seconds": self.watch_timeout}
                if resource_version:
                    kwargs["resource_version"] = resource_version
                for event in w.stream(
                    self.custom.list_namespaced_custom_object,
                    FUNCTION_GROUP,
                    FUNCTION_VERSION,
                    namespace,
                    FUNCTION_PLURAL,
                    **kwargs,
                ):
                    obj = event["object"]
                    resource_version = obj.get("metadata", {}).get("resourceVersion")
                    self._loop.call_soon_threadsafe(
                        self._queue.put_nowait, (event["type"], obj)
                    )
            except ApiException as e:
                if e.status == 410:
                    # Resource version too old; relist from scratch.
                    resource_version = None
                    continue
                logger.error(f"Function watch failed in {namespace}: {e}")
                self._stopping.wait(1.0)
            except Exception as e:
                if self._stopping.is_set():
                    break
                logger.error(f"Function watch failed in {namespace}: {e}")
                self._stopping.wait(1.0)
            finally:
                self._watches.remove(w)

    async def _dispatch_loop(self) -> None:
        while True:
            event: Tuple[str, dict] = await self._queue.get()
            try:
                await self.dispatch(*event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Function event handling failed: {e}")

    async def dispatch(self, event_type: str, obj: dict) -> None:
        """Route one watch event to the matching executor handler."""
        if event_type not in (ADDED, MODIFIED, DELETED):
            logger.debug(f"Ignoring function event {event_type}")
            return

        fn = Function.from_dict(obj)
        uid = fn.metadata.uid

        if event_type == ADDED:
            old = self.known.get(uid)
            self.known[uid] = fn
            if old is None:
                await self.executor.on_function_add(fn)
            else:
                # Re-listed after a stream restart.
                await self.executor.on_function_update(old, fn)
        elif event_type == MODIFIED:
            old = self.known.get(uid, fn)
            self.known[uid] = fn
            await self.executor.on_function_update(old, fn)
        elif event_type == DELETED:
            self.known.pop(uid, None)
            await self.executor.on_function_delete(fn)
