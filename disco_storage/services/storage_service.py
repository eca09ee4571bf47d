"""Caller-facing storage API.

Each call turns into a storage task on the shared queue and waits for the
worker to resolve it. Calls made concurrently are therefore executed in the
order they were enqueued.
"""

import logging
from typing import Any

from disco_storage.errors import Result
from disco_storage.models import FileModel
from disco_storage.queue import FileOperationType
from disco_storage.queue import FileStorageTask
from disco_storage.queue import FolderOperationType
from disco_storage.queue import FolderStorageTask
from disco_storage.queue import StorageTask
from disco_storage.queue import StorageTaskQueue
from disco_storage.services.ray_id_service import get_logger_with_ray_id


logger = logging.getLogger(__name__)


class StorageService:
    def __init__(self, queue: StorageTaskQueue) -> None:
        self.queue = queue

    async def _submit(self, task: StorageTask) -> Result[Any]:
        get_logger_with_ray_id(__name__, task.ray_id).debug(f"Submitting storage task {task.name}")
        completion = await self.queue.enqueue(task)
        return await completion

    async def get_file(self, object_id: str) -> Result[FileModel]:
        return await self._submit(FileStorageTask(path=object_id, operation=FileOperationType.READ))

    async def upload_file(self, object_id: str, file_name: str, content: bytes) -> Result[str]:
        return await self._submit(
            FileStorageTask(path=object_id, operation=FileOperationType.UPLOAD, file_name=file_name, content=content)
        )

    async def delete_file(self, object_id: str) -> Result[None]:
        return await self._submit(FileStorageTask(path=object_id, operation=FileOperationType.DELETE))

    async def read_folder(self, path: str) -> Result[Any]:
        return await self._submit(FolderStorageTask(path=path, operation=FolderOperationType.READ))

    async def create_folder(self, path: str) -> Result[Any]:
        return await self._submit(FolderStorageTask(path=path, operation=FolderOperationType.CREATE))

    async def delete_folder(self, path: str) -> Result[Any]:
        return await self._submit(FolderStorageTask(path=path, operation=FolderOperationType.DELETE))
