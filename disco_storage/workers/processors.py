import logging
from typing import Any

from disco_storage.errors import InternalServerError
from disco_storage.errors import NotFoundError
from disco_storage.errors import NotImplementedYetError
from disco_storage.errors import Result
from disco_storage.errors import ValidationError
from disco_storage.metadata.catalog import Catalog
from disco_storage.queue import FileOperationType
from disco_storage.queue import FileStorageTask
from disco_storage.queue import FolderOperationType
from disco_storage.queue import FolderStorageTask
from disco_storage.workers.deleter import Deleter
from disco_storage.workers.deleter import is_partially_deleted
from disco_storage.workers.downloader import Downloader
from disco_storage.workers.uploader import Uploader


logger = logging.getLogger(__name__)


class FileTaskProcessor:
    """Runs file tasks against the channel and keeps the catalog in step."""

    def __init__(self, uploader: Uploader, downloader: Downloader, deleter: Deleter, catalog: Catalog):
        self.uploader = uploader
        self.downloader = downloader
        self.deleter = deleter
        self.catalog = catalog

    async def process(self, task: FileStorageTask) -> Result[Any]:
        if task.operation is FileOperationType.READ:
            return await self._read(task)
        if task.operation is FileOperationType.UPLOAD:
            return await self._upload(task)
        if task.operation is FileOperationType.DELETE:
            return await self._delete(task)
        return Result.fail(ValidationError(f"Invalid operation type: {task.operation}"))

    async def _read(self, task: FileStorageTask) -> Result[Any]:
        message_ids = await self.catalog.resolve_message_ids(task.path)
        if message_ids is None:
            return Result.fail(NotFoundError("File does not exist", object_id=task.path))
        return await self.downloader.download(message_ids)

    async def _upload(self, task: FileStorageTask) -> Result[Any]:
        if task.content is None:
            return Result.fail(ValidationError("Upload task has no content", object_id=task.path))
        file_name = task.file_name or task.path

        existing = await self.catalog.resolve_message_ids(task.path)
        if existing is not None:
            return Result.fail(ValidationError("File with this id already exists", object_id=task.path))

        upload_result = await self.uploader.upload(task.content, file_name)
        if upload_result.is_failed:
            return upload_result.cast()
        message_ids = upload_result.value

        try:
            await self.catalog.persist_message_ids(task.path, file_name, len(task.content), message_ids)
        except Exception as e:
            logger.error(f"Failed to record object {task.path} in catalog, removing its {len(message_ids)} messages")
            cleanup = await self.deleter.delete(message_ids)
            if cleanup.is_failed:
                logger.error(f"Cleanup after catalog failure left orphans: {cleanup.error_messages()}")
            return Result.fail(
                InternalServerError(f"Failed to record file {file_name}", object_id=task.path).caused_by(e)
            )

        logger.info(f"Stored object {task.path} ({file_name}) in {len(message_ids)} messages")
        return Result.ok(task.path)

    async def _delete(self, task: FileStorageTask) -> Result[Any]:
        message_ids = await self.catalog.resolve_message_ids(task.path)
        if message_ids is None:
            return Result.fail(NotFoundError("File does not exist", object_id=task.path))

        result = await self.deleter.delete(message_ids)
        if result.is_success:
            await self.catalog.remove_object(task.path)
            return result
        if is_partially_deleted(result):
            logger.warning(f"Object {task.path} was partially deleted; marking it corrupted")
            await self.catalog.mark_corrupted(task.path)
        return result


class FolderTaskProcessor:
    """Folder operations are not backed by the channel yet."""

    async def process(self, task: FolderStorageTask) -> Result[Any]:
        if task.operation in (FolderOperationType.READ, FolderOperationType.CREATE, FolderOperationType.DELETE):
            return Result.fail(
                NotImplementedYetError(f"Folder {task.operation.value} operation is not implemented", path=task.path)
            )
        return Result.fail(ValidationError(f"Invalid operation type: {task.operation}"))
