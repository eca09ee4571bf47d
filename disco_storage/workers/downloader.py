# -*- coding: utf-8 -*-
"""Object download and reassembly.

For each message id of an object the downloader:

1. Fetches the message from the channel.
2. Checks its attachment count against the configured batch width.
3. Downloads every attachment body concurrently.

Each message yields an independent ``Result`` so that one failing message
never hides another. Only after every message has been processed does the
downloader decide: any failure fails the whole read with the union of the
errors, otherwise the parts are numbered, sequence-checked and stitched back
together.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import List
from typing import Sequence

from opentelemetry import trace

from disco_storage import codec
from disco_storage.config import StorageConfig
from disco_storage.errors import InternalServerError
from disco_storage.errors import NotFoundError
from disco_storage.errors import Result
from disco_storage.errors import StorageError
from disco_storage.errors import ValidationError
from disco_storage.models import FileModel
from disco_storage.models import FilePart
from disco_storage.services.channel_service import ChannelAPIError
from disco_storage.services.channel_service import ChannelAttachment
from disco_storage.services.channel_service import ChannelBackend
from disco_storage.services.channel_service import ChannelNotFoundError
from disco_storage.utils import async_timing_context
from disco_storage.utils import format_size
from disco_storage.workers.uploader import concurrency_limiter


logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

UNKNOWN_FILE_NAME = "unknown_file"


class Downloader:
    def __init__(self, channel: ChannelBackend, config: StorageConfig):
        self.channel = channel
        self.config = config

    async def download(self, message_ids: Sequence[int]) -> Result[FileModel]:
        logger.info(f"Attempting to read file from {len(message_ids)} messages.")

        if not message_ids:
            logger.warning("No message IDs provided for reading file.")
            return Result.fail(ValidationError("No message IDs provided"))

        with tracer.start_as_current_span(
            "downloader.download",
            attributes={"num_messages": len(message_ids)},
        ) as span:
            t_start = time.perf_counter()
            limiter = concurrency_limiter(self.config.max_concurrency)
            total = len(message_ids)

            async def _guarded(message_id: int, position: int) -> Result[List[FilePart]]:
                async with limiter:
                    return await self._download_message(message_id, position, total)

            all_results = await asyncio.gather(
                *[_guarded(message_id, position) for position, message_id in enumerate(message_ids)]
            )

            failed = [r for r in all_results if r.is_failed]
            if failed:
                aggregated: List[StorageError] = [e for r in failed for e in r.errors]
                span.set_status(trace.StatusCode.ERROR, "part failure")
                logger.error(
                    f"One or more file parts failed to download. MessageIds: {', '.join(map(str, message_ids))}. "
                    f"Errors: {'; '.join(e.describe() for e in aggregated)}"
                )
                return Result.fail(
                    InternalServerError("Failed to retrieve one or more file parts.")
                ).with_errors(aggregated)

            # Number parts globally in message order, then attachment order
            parts: List[FilePart] = []
            for result in all_results:
                for part in result.value:
                    part.index = len(parts)
                    parts.append(part)

            try:
                sequence_error = self._check_sequence(parts)
                if sequence_error is not None:
                    span.set_status(trace.StatusCode.ERROR, "out of sequence")
                    return Result.fail(sequence_error)
                file_model = self._assemble(parts)
            except Exception as ex:
                logger.exception(
                    f"Failed to assemble file from parts. MessageIds: {', '.join(map(str, message_ids))}"
                )
                return Result.fail(InternalServerError(f"Failed to assemble file: {ex}").caused_by(ex))
            finally:
                parts.clear()

            total_ms = (time.perf_counter() - t_start) * 1000.0
            span.set_attribute("result.size_bytes", file_model.size)
            logger.info(
                f"File {file_model.file_name} successfully reconstructed from {total} messages "
                f"size={format_size(file_model.size)} total={total_ms:.0f}ms"
            )
            return Result.ok(file_model)

    async def _download_message(self, message_id: int, position: int, total: int) -> Result[List[FilePart]]:
        try:
            logger.debug(f"Starting task for message {message_id} (Part {position + 1}/{total}).")

            try:
                message = await self.channel.get_message(self.config.channel_id, message_id)
            except ChannelNotFoundError as ex:
                logger.warning(f"Message {message_id} for part {position + 1} no longer exists.")
                return Result.fail(
                    NotFoundError(f"Message {message_id} not found.", message_id=message_id).caused_by(ex)
                )
            except (ChannelAPIError, OSError) as ex:
                logger.warning(f"Channel error while fetching message {message_id} for part {position + 1}: {ex}")
                return Result.fail(
                    InternalServerError(
                        f"Failed to fetch message details for {message_id}. Channel API error: {ex}",
                        message_id=message_id,
                    ).caused_by(ex)
                )

            attachment_count = len(message.attachments)
            if attachment_count == 0:
                error_msg = f"Message {message_id} contains no attachments."
                logger.warning(error_msg)
                return Result.fail(InternalServerError(error_msg, message_id=message_id))
            if attachment_count > self.config.max_attachments_per_message:
                error_msg = (
                    f"Message {message_id} contains {attachment_count} attachments, "
                    f"expected at most {self.config.max_attachments_per_message}."
                )
                logger.warning(error_msg)
                return Result.fail(InternalServerError(error_msg, message_id=message_id))

            results = await asyncio.gather(
                *[
                    self._download_attachment(message_id, attachment, i)
                    for i, attachment in enumerate(message.attachments)
                ]
            )

            if any(r.is_failed for r in results):
                return Result.fail(
                    InternalServerError(f"Failed to download message {message_id}.", message_id=message_id)
                ).with_errors([e for r in results for e in r.errors])

            return Result.ok([r.value for r in results])
        except Exception as ex:
            logger.exception(f"Unexpected error processing message {message_id} for part {position + 1}.")
            return Result.fail(
                InternalServerError(
                    f"Unexpected error processing part for message {message_id}.", message_id=message_id
                ).caused_by(ex)
            )

    async def _download_attachment(
        self, message_id: int, attachment: ChannelAttachment, index: int
    ) -> Result[FilePart]:
        logger.debug(f"Downloading attachment {attachment.filename} from URL {attachment.url}.")
        try:
            async with async_timing_context(
                "downloader.download_attachment", extra={"message_id": message_id, "index": index}
            ) as timing:
                content = await self.channel.download_attachment(attachment.url)
                timing["size_bytes"] = len(content)
        except Exception as ex:
            error_msg = f"Failed to download attachment {attachment.filename} of message {message_id}: {ex}"
            logger.warning(error_msg)
            return Result.fail(
                InternalServerError(error_msg, message_id=message_id, attachment=attachment.filename).caused_by(ex)
            )

        logger.debug(f"Finished downloading part {attachment.filename} ({format_size(len(content))}).")
        return Result.ok(FilePart(index=index, content=content, raw_file_name=attachment.filename))

    @staticmethod
    def _check_sequence(parts: Sequence[FilePart]) -> StorageError | None:
        """Reject part sets whose ``.partN`` names disagree with their position."""
        for part in parts:
            number = codec.part_number_from(part.raw_file_name)
            if number is not None and number != part.index + 1:
                error_msg = (
                    f"Part {part.raw_file_name} is out of sequence: expected part{part.index + 1}, got part{number}."
                )
                logger.error(error_msg)
                return InternalServerError(error_msg, attachment=part.raw_file_name)
        return None

    @staticmethod
    def _assemble(parts: Sequence[FilePart]) -> FileModel:
        file_name = UNKNOWN_FILE_NAME
        if parts:
            first = min(parts, key=lambda p: p.index)
            file_name = codec.original_name_from(first.raw_file_name)
            if file_name == first.raw_file_name:
                logger.warning(
                    f"Could not extract original filename from {first.raw_file_name}. "
                    "Using attachment name as fallback."
                )
        return FileModel(file_name=file_name, content=codec.reassemble(parts))
