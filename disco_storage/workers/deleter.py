import logging
import time
from typing import Sequence

from opentelemetry import trace

from disco_storage.config import StorageConfig
from disco_storage.errors import InternalServerError
from disco_storage.errors import NotFoundError
from disco_storage.errors import Result
from disco_storage.services.channel_service import ChannelBackend
from disco_storage.services.channel_service import ChannelNotFoundError


logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

PARTIALLY_DELETED = "partially_deleted"


class Deleter:
    """Deletes every chunk message of an object, one at a time.

    Deletion is sequential so that a hard failure stops immediately and the
    caller learns whether some chunks are already gone (``partially_deleted``).
    """

    def __init__(self, channel: ChannelBackend, config: StorageConfig):
        self.channel = channel
        self.config = config

    async def delete(self, message_ids: Sequence[int]) -> Result[None]:
        partially_deleted = False

        logger.info(f"Attempting to delete file parts from {len(message_ids)} messages.")

        if not message_ids:
            logger.warning("No message IDs provided for file deletion.")
            return Result.fail(NotFoundError("File not found")).with_metadata(
                **{PARTIALLY_DELETED: partially_deleted}
            )

        with tracer.start_as_current_span(
            "deleter.delete",
            attributes={"num_messages": len(message_ids)},
        ) as span:
            start_time = time.time()
            already_gone = 0
            for message_id in message_ids:
                try:
                    logger.debug(f"Deleting message {message_id}")
                    await self.channel.delete_message(self.config.channel_id, message_id)
                    logger.debug(f"Successfully deleted message {message_id}")
                    partially_deleted = True
                except ChannelNotFoundError:
                    already_gone += 1
                    logger.warning(f"Message {message_id} not found during deletion, possibly already deleted.")
                except Exception as ex:
                    logger.error(f"Failed to delete message {message_id}: {ex}")
                    span.set_status(trace.StatusCode.ERROR, str(ex))
                    span.set_attribute("result.partially_deleted", partially_deleted)
                    return Result.fail(
                        InternalServerError(f"Failed to delete message {message_id}", message_id=message_id)
                        .caused_by(ex)
                        .with_metadata(**{PARTIALLY_DELETED: partially_deleted})
                    ).with_metadata(**{PARTIALLY_DELETED: partially_deleted})

            logger.info(
                f"Successfully deleted file parts from {len(message_ids)} messages "
                f"(already_gone={already_gone}) in {(time.time() - start_time) * 1000:.0f} ms."
            )
            return Result.ok().with_metadata(**{PARTIALLY_DELETED: False})


def is_partially_deleted(result: Result) -> bool:
    return bool(result.metadata.get(PARTIALLY_DELETED, False))
