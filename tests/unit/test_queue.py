import asyncio

import pytest

from disco_storage.errors import ErrorKind
from disco_storage.errors import Result
from disco_storage.queue import FileOperationType
from disco_storage.queue import FileStorageTask
from disco_storage.queue import FolderOperationType
from disco_storage.queue import FolderStorageTask
from disco_storage.queue import StorageTaskQueue
from disco_storage.queue import TaskState


@pytest.mark.asyncio
async def test_task_names_and_kinds():
    file_task = FileStorageTask(path="obj-1", operation=FileOperationType.UPLOAD, ray_id="a1b2c3d4e5f67890")
    folder_task = FolderStorageTask(path="/docs", operation=FolderOperationType.CREATE)

    assert file_task.kind == "File"
    assert file_task.operation_name == "Upload"
    assert file_task.name == "file::upload::obj-1::a1b2c3d4e5f67890"
    assert folder_task.kind == "Folder"
    assert folder_task.operation_name == "Create"
    assert len(folder_task.ray_id) == 16


@pytest.mark.asyncio
async def test_complete_resolves_future_once():
    task = FileStorageTask(path="obj-1")

    assert task.complete(Result.ok("first"))
    assert not task.complete(Result.ok("second"))

    assert task.state is TaskState.COMPLETED
    assert (await task.completion).value == "first"


@pytest.mark.asyncio
async def test_cancel_only_pending_tasks():
    pending = FileStorageTask(path="obj-1")
    in_flight = FileStorageTask(path="obj-2")
    in_flight.mark_in_flight()

    assert pending.cancel()
    assert pending.completion.cancelled()
    assert pending.state is TaskState.CANCELLED
    assert not in_flight.cancel()
    assert in_flight.state is TaskState.IN_FLIGHT


@pytest.mark.asyncio
async def test_queue_is_fifo():
    queue = StorageTaskQueue()
    tasks = [FileStorageTask(path=f"obj-{i}") for i in range(5)]

    for task in tasks:
        await queue.enqueue(task)

    assert queue.qsize() == 5
    dequeued = [await queue.dequeue() for _ in tasks]
    assert dequeued == tasks
    assert all(t.state is TaskState.IN_FLIGHT for t in dequeued)


@pytest.mark.asyncio
async def test_enqueue_returns_task_future():
    queue = StorageTaskQueue()
    task = FileStorageTask(path="obj-1")

    completion = await queue.enqueue(task)

    assert completion is task.completion
    assert not completion.done()


@pytest.mark.asyncio
async def test_dequeue_waits_for_producer():
    queue = StorageTaskQueue()
    task = FileStorageTask(path="obj-1")

    waiter = asyncio.create_task(queue.dequeue(asyncio.Event()))
    await asyncio.sleep(0)
    assert not waiter.done()

    await queue.enqueue(task)

    assert await asyncio.wait_for(waiter, timeout=1) is task


@pytest.mark.asyncio
async def test_dequeue_returns_none_when_stopped_and_keeps_items():
    queue = StorageTaskQueue()
    stop_event = asyncio.Event()

    waiter = asyncio.create_task(queue.dequeue(stop_event))
    await asyncio.sleep(0)
    stop_event.set()

    assert await asyncio.wait_for(waiter, timeout=1) is None

    task = FileStorageTask(path="obj-1")
    await queue.enqueue(task)
    assert await queue.dequeue() is task


@pytest.mark.asyncio
async def test_dequeue_with_stop_already_set():
    queue = StorageTaskQueue()
    stop_event = asyncio.Event()
    stop_event.set()
    await queue.enqueue(FileStorageTask(path="obj-1"))

    assert await queue.dequeue(stop_event) is None
    assert queue.qsize() == 1


@pytest.mark.asyncio
async def test_close_cancels_pending_and_rejects_new_tasks():
    queue = StorageTaskQueue()
    pending = [FileStorageTask(path=f"obj-{i}") for i in range(3)]
    for task in pending:
        await queue.enqueue(task)

    assert queue.close() == 3
    assert queue.closed
    assert all(t.completion.cancelled() for t in pending)

    late = FileStorageTask(path="late")
    result = await (await queue.enqueue(late))
    assert result.has_error_kind(ErrorKind.INTERNAL)
    assert result.errors[0].message == "Storage queue is shut down"


@pytest.mark.asyncio
async def test_close_settles_tasks_their_callers_already_cancelled():
    queue = StorageTaskQueue()
    task = FileStorageTask(path="obj-1")
    completion = await queue.enqueue(task)
    completion.cancel()

    assert queue.close() == 1
    assert task.state is TaskState.CANCELLED
