"""Wiring for the storage engine: channel client, workers, queue and service."""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator
from typing import Optional

from disco_storage.config import Config
from disco_storage.config import StorageConfig
from disco_storage.config import get_config
from disco_storage.metadata.catalog import Catalog
from disco_storage.metadata.catalog import JsonFileCatalog
from disco_storage.queue import StorageTaskQueue
from disco_storage.services.channel_service import ChannelBackend
from disco_storage.services.channel_service import ChannelClient
from disco_storage.services.storage_service import StorageService
from disco_storage.workers.deleter import Deleter
from disco_storage.workers.downloader import Downloader
from disco_storage.workers.processors import FileTaskProcessor
from disco_storage.workers.processors import FolderTaskProcessor
from disco_storage.workers.storage_worker import StorageWorker
from disco_storage.workers.uploader import Uploader


logger = logging.getLogger(__name__)


@dataclass
class StorageStack:
    queue: StorageTaskQueue
    worker: StorageWorker
    service: StorageService
    catalog: Catalog


def build_storage_stack(channel: ChannelBackend, storage_config: StorageConfig, catalog: Catalog) -> StorageStack:
    """Assemble the queue, worker and service around one channel backend."""
    queue = StorageTaskQueue()
    file_processor = FileTaskProcessor(
        uploader=Uploader(channel, storage_config),
        downloader=Downloader(channel, storage_config),
        deleter=Deleter(channel, storage_config),
        catalog=catalog,
    )
    worker = StorageWorker(queue, file_processor, FolderTaskProcessor())
    return StorageStack(queue=queue, worker=worker, service=StorageService(queue), catalog=catalog)


@asynccontextmanager
async def storage_lifespan(
    config: Optional[Config] = None,
    catalog: Optional[Catalog] = None,
) -> AsyncGenerator[StorageStack, None]:
    """Run the storage worker for the duration of the ``async with`` block."""
    config = config or get_config()
    storage_config = StorageConfig.from_config(config)
    catalog = catalog if catalog is not None else JsonFileCatalog(config.catalog_path)

    async with ChannelClient(config=config) as channel:
        logger.info(
            f"Channel client initialized api={config.channel_api_url} channel_id={storage_config.channel_id} "
            f"chunk_size={storage_config.max_chunk_size} batch={storage_config.max_attachments_per_message}"
        )
        stack = build_storage_stack(channel, storage_config, catalog)
        stack.worker.start()
        try:
            yield stack
        finally:
            await stack.worker.stop(timeout=config.worker_stop_timeout_seconds)
            logger.info("Storage worker shut down")
