"""Single consumer of the storage task queue.

The worker is the only code that resolves task futures. It handles one task
at a time, which keeps the channel's request rate bounded and the ordering
of operations equal to the order they were enqueued.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Any
from typing import Optional

from opentelemetry import trace

from disco_storage.errors import InternalServerError
from disco_storage.errors import Result
from disco_storage.queue import FileStorageTask
from disco_storage.queue import FolderStorageTask
from disco_storage.queue import StorageTask
from disco_storage.queue import StorageTaskQueue
from disco_storage.queue import TaskState
from disco_storage.services.ray_id_service import bind_task_context
from disco_storage.services.ray_id_service import get_logger_with_ray_id
from disco_storage.workers.processors import FileTaskProcessor
from disco_storage.workers.processors import FolderTaskProcessor


logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class StorageWorker:
    def __init__(
        self,
        queue: StorageTaskQueue,
        file_processor: FileTaskProcessor,
        folder_processor: FolderTaskProcessor,
    ) -> None:
        self.queue = queue
        self.file_processor = file_processor
        self.folder_processor = folder_processor
        self.stop_event = asyncio.Event()
        self.processed = 0
        self._runner: Optional[asyncio.Task[None]] = None

    def start(self) -> "asyncio.Task[None]":
        if self._runner is None or self._runner.done():
            self.stop_event.clear()
            self._runner = asyncio.create_task(self.run(), name="storage-worker")
        return self._runner

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Stop after the current task, then cancel whatever is still queued."""
        self.stop_event.set()
        if self._runner is not None:
            try:
                await asyncio.wait_for(self._runner, timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Storage worker did not stop in time; cancelling the in-flight task")
                self._runner.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._runner
        self.queue.close()

    async def run(self) -> None:
        logger.info("Storage worker started")
        while not self.stop_event.is_set():
            task = await self.queue.dequeue(self.stop_event)
            if task is None:
                break
            await self.process_task(task)
        logger.info(f"Storage worker stopped after {self.processed} tasks")

    async def process_task(self, task: StorageTask) -> None:
        with bind_task_context(task.ray_id, f"{task.kind.lower()}:{task.operation_name.lower()}"):
            await self._process_bound(task)

    async def _process_bound(self, task: StorageTask) -> None:
        worker_logger = get_logger_with_ray_id(__name__, task.ray_id)
        task_type, operation_type = task.kind, task.operation_name
        queued_ms = max(0.0, (time.time() - task.enqueued_at) * 1000)

        if task.completion.cancelled():
            # The caller gave up while the task was queued; never touch the channel for it
            task.state = TaskState.CANCELLED
            worker_logger.info(
                f"Skipping {task_type} storage task ({operation_type}) for path: {task.path}; "
                f"cancelled by caller after {queued_ms:.0f}ms in queue"
            )
            return

        task.mark_in_flight()

        worker_logger.info(
            f"Processing {task_type} storage task ({operation_type}) for path: {task.path} queued={queued_ms:.0f}ms"
        )
        start = time.perf_counter()

        with tracer.start_as_current_span(
            "storage_worker.task",
            attributes={
                "task.kind": task_type,
                "task.operation": operation_type,
                "task.queued_ms": queued_ms,
                "ray_id": task.ray_id,
            },
        ) as span:
            try:
                result = await self._dispatch(task)
                if result is not None:
                    task.complete(result)
            except asyncio.CancelledError:
                task.complete(
                    Result.fail(InternalServerError(f"Storage worker stopped during {task_type} operation"))
                )
                raise
            except Exception as e:
                span.record_exception(e)
                worker_logger.exception(
                    f"Error processing {task_type} storage task ({operation_type}) for path: {task.path}"
                )
                task.complete(
                    Result.fail(
                        InternalServerError(f"Error processing {task_type} operation: {operation_type}").caused_by(e)
                    )
                )

            if not task.is_completed:
                worker_logger.warning(
                    f"Task not completed after processing {task_type} task ({operation_type}) for path: {task.path}"
                )
                task.complete(
                    Result.fail(InternalServerError(f"Something went wrong with {task_type} operation: {operation_type}"))
                )

            if task.completion.cancelled():
                # Cancelled by the caller mid-flight; the work ran but nobody receives the result
                task.state = TaskState.CANCELLED
                succeeded = False
                span.set_status(trace.StatusCode.ERROR, "caller cancelled")
            else:
                outcome = task.completion.result()
                succeeded = outcome.is_success
                if outcome.is_failed:
                    span.set_status(trace.StatusCode.ERROR, "; ".join(outcome.error_messages()))

        self.processed += 1
        worker_logger.info(
            f"Finished {task_type} storage task ({operation_type}) for path: {task.path} "
            f"ok={succeeded} duration={(time.perf_counter() - start) * 1000:.0f}ms"
        )

    async def _dispatch(self, task: StorageTask) -> Optional[Result[Any]]:
        if isinstance(task, FolderStorageTask):
            return await self.folder_processor.process(task)
        if isinstance(task, FileStorageTask):
            return await self.file_processor.process(task)
        return Result.fail(InternalServerError("Unknown task type"))
