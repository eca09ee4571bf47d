import asyncio
import contextlib
import logging
import time
from typing import List
from typing import Sequence
from typing import Tuple

from opentelemetry import trace

from disco_storage import codec
from disco_storage.config import StorageConfig
from disco_storage.errors import InternalServerError
from disco_storage.errors import Result
from disco_storage.errors import StorageError
from disco_storage.errors import ValidationError
from disco_storage.models import Chunk
from disco_storage.services.channel_service import AttachmentUpload
from disco_storage.services.channel_service import ChannelBackend
from disco_storage.utils import format_size
from disco_storage.utils import log_timing


logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def concurrency_limiter(max_concurrency: int) -> contextlib.AbstractAsyncContextManager:
    """Semaphore bounding concurrent channel calls; 0 means unbounded."""
    if max_concurrency > 0:
        return asyncio.Semaphore(max_concurrency)
    return contextlib.nullcontext()


def batch_chunks(chunks: Sequence[Chunk], width: int) -> List[List[Chunk]]:
    """Group consecutive chunks into batches of at most ``width``."""
    return [list(chunks[i : i + width]) for i in range(0, len(chunks), width)]


class Uploader:
    def __init__(self, channel: ChannelBackend, config: StorageConfig):
        self.channel = channel
        self.config = config

    async def upload(self, data: bytes, base_name: str) -> Result[List[int]]:
        """Store ``data`` in the channel and return message ids in chunk order.

        Every batch is sent concurrently. If any send fails the whole upload
        fails, and messages that did make it are deleted best-effort.
        """
        problems = self.config.validation_problems()
        if problems:
            return Result.fail(ValidationError("Invalid storage configuration: " + "; ".join(problems)))
        if not base_name:
            return Result.fail(ValidationError("A file name is required to upload"))

        with tracer.start_as_current_span(
            "uploader.upload",
            attributes={"file_name": base_name, "size_bytes": len(data)},
        ) as span:
            start_time = time.time()
            logger.info(f"Attempting to upload file {base_name} of size {format_size(len(data))}")

            chunks = codec.split(data, self.config.max_chunk_size, base_name)
            if not chunks:
                # Empty objects are stored as a single zero-byte part so they can be read back
                chunks = [Chunk(index=0, payload=b"", source_name=codec.name_for(base_name, 0))]
            batches = batch_chunks(chunks, self.config.max_attachments_per_message)
            limiter = concurrency_limiter(self.config.max_concurrency)

            async def send_batch(batch: List[Chunk]) -> Tuple[int, int]:
                start_index = batch[0].index
                async with limiter:
                    t0 = time.perf_counter()
                    message = await self.channel.send_message(
                        self.config.channel_id,
                        [AttachmentUpload(filename=c.source_name, content=c.payload) for c in batch],
                    )
                    log_timing(
                        "uploader.send_message",
                        (time.perf_counter() - t0) * 1000.0,
                        extra={"start_index": start_index, "parts": len(batch), "message_id": message.id},
                    )
                return start_index, message.id

            try:
                results = await asyncio.gather(*[send_batch(b) for b in batches], return_exceptions=True)
            finally:
                # Drop chunk buffers on every exit path
                batches.clear()
                chunks.clear()

            sent: List[Tuple[int, int]] = []
            errors: List[StorageError] = []
            for result in results:
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    errors.append(
                        InternalServerError(f"Failed to send chunk message: {result}").caused_by(result)
                    )
                else:
                    sent.append(result)

            if errors:
                span.set_status(trace.StatusCode.ERROR, "send failure")
                logger.error(
                    f"Upload of {base_name} failed: {len(errors)}/{len(results)} messages failed to send; "
                    f"rolling back {len(sent)} sent messages"
                )
                await self._rollback([message_id for _, message_id in sent])
                return Result.fail(
                    InternalServerError(f"Failed to upload file {base_name}.", file_name=base_name)
                ).with_errors(errors)

            # Order by the batch's first chunk index, never by completion time
            sent.sort(key=lambda item: item[0])
            message_ids = [message_id for _, message_id in sent]

            total_duration = time.time() - start_time
            span.set_attribute("result.messages", len(message_ids))
            logger.info(
                f"File {base_name} uploaded successfully in {len(message_ids)} messages. "
                f"Time taken: {total_duration * 1000:.0f} ms."
            )
            return Result.ok(message_ids)

    async def _rollback(self, message_ids: List[int]) -> None:
        for message_id in message_ids:
            try:
                await self.channel.delete_message(self.config.channel_id, message_id)
            except Exception as e:
                logger.warning(f"Could not remove orphaned message {message_id} after failed upload: {e}")
