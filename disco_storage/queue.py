import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Optional
from typing import Union

from disco_storage.errors import InternalServerError
from disco_storage.errors import Result
from disco_storage.services.ray_id_service import generate_ray_id


logger = logging.getLogger(__name__)


class FileOperationType(str, enum.Enum):
    READ = "Read"
    UPLOAD = "Upload"
    DELETE = "Delete"


class FolderOperationType(str, enum.Enum):
    READ = "Read"
    CREATE = "Create"
    DELETE = "Delete"


class TaskState(str, enum.Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def _new_future() -> "asyncio.Future[Result[Any]]":
    return asyncio.get_running_loop().create_future()


@dataclass(eq=False)
class StorageTask:
    """One queued storage operation and the future its caller awaits.

    Must be created inside a running event loop. The future is assigned at
    most once; after that the task is inert.
    """

    path: str
    ray_id: str = field(default_factory=generate_ray_id)
    enqueued_at: float = field(default_factory=time.time)
    state: TaskState = TaskState.PENDING
    completion: "asyncio.Future[Result[Any]]" = field(default_factory=_new_future, repr=False)

    @property
    def kind(self) -> str:
        return "Unknown"

    @property
    def operation_name(self) -> str:
        return "Unknown"

    @property
    def name(self) -> str:
        return f"{self.kind.lower()}::{self.operation_name.lower()}::{self.path}::{self.ray_id}"

    @property
    def is_completed(self) -> bool:
        return self.completion.done()

    def mark_in_flight(self) -> None:
        if self.state is TaskState.PENDING:
            self.state = TaskState.IN_FLIGHT

    def complete(self, result: Result[Any]) -> bool:
        """Resolve the caller's future. Returns False if it was already resolved."""
        if self.completion.done():
            logger.warning(f"Ignoring second completion for task {self.name} (state={self.state.value})")
            return False
        self.completion.set_result(result)
        self.state = TaskState.COMPLETED
        return True

    def cancel(self) -> bool:
        """Cancel a task that never reached the worker."""
        if self.state is not TaskState.PENDING:
            return False
        if not self.completion.done():
            self.completion.cancel()
        elif not self.completion.cancelled():
            return False
        self.state = TaskState.CANCELLED
        return True


@dataclass(eq=False)
class FileStorageTask(StorageTask):
    operation: FileOperationType = FileOperationType.READ
    file_name: Optional[str] = None
    content: Optional[bytes] = field(default=None, repr=False)

    @property
    def kind(self) -> str:
        return "File"

    @property
    def operation_name(self) -> str:
        return self.operation.value


@dataclass(eq=False)
class FolderStorageTask(StorageTask):
    operation: FolderOperationType = FolderOperationType.READ

    @property
    def kind(self) -> str:
        return "Folder"

    @property
    def operation_name(self) -> str:
        return self.operation.value


AnyStorageTask = Union[FileStorageTask, FolderStorageTask]


class StorageTaskQueue:
    """Unbounded FIFO of storage tasks with a single consumer.

    Producers are never backpressured. ``dequeue`` is meant to be called by
    exactly one worker.
    """

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[StorageTask]" = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    async def enqueue(self, task: StorageTask) -> "asyncio.Future[Result[Any]]":
        """Add a task and hand back the future that resolves with its result."""
        if self._closed:
            logger.warning(f"Rejecting task {task.name}: queue is closed")
            task.complete(Result.fail(InternalServerError("Storage queue is shut down")))
            return task.completion
        self._queue.put_nowait(task)
        logger.debug(f"Enqueued storage task {task.name} depth={self._queue.qsize()}")
        return task.completion

    async def dequeue(self, stop_event: Optional[asyncio.Event] = None) -> Optional[StorageTask]:
        """Wait for the next task; returns None once ``stop_event`` is set."""
        if stop_event is None:
            task = await self._queue.get()
            task.mark_in_flight()
            return task

        if stop_event.is_set():
            return None

        get_task = asyncio.ensure_future(self._queue.get())
        stop_task = asyncio.ensure_future(stop_event.wait())
        try:
            done, _ = await asyncio.wait({get_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            get_task.cancel()
            stop_task.cancel()
            raise
        stop_task.cancel()

        if get_task in done:
            task = get_task.result()
            task.mark_in_flight()
            return task

        # Queue.get leaves the item in place when cancelled, so nothing is lost
        get_task.cancel()
        return None

    def close(self) -> int:
        """Tear the queue down; every task still waiting is cancelled."""
        self._closed = True
        cancelled = 0
        while True:
            try:
                task = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if task.cancel():
                cancelled += 1
        if cancelled:
            logger.info(f"Cancelled {cancelled} pending storage tasks on shutdown")
        return cancelled
