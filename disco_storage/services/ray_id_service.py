"""Per-task correlation ids for log lines.

Every storage task gets a ray id when it is created. While the storage worker
runs the task it binds that id, together with the task's label, to the
current context, so lines logged by the uploader, downloader and channel
client can be joined back to the caller that submitted the task.
"""

import contextlib
import contextvars
import logging
import uuid
from typing import Any
from typing import Iterator
from typing import MutableMapping
from typing import Optional


NO_RAY_ID = "no-ray-id"
NO_TASK = "-"

ray_id_context: contextvars.ContextVar[str] = contextvars.ContextVar("ray_id", default=NO_RAY_ID)
task_label_context: contextvars.ContextVar[str] = contextvars.ContextVar("task_label", default=NO_TASK)


def generate_ray_id() -> str:
    """Return a 16-character lowercase hex id (first 64 bits of a UUID4)."""
    return uuid.uuid4().hex[:16]


@contextlib.contextmanager
def bind_task_context(ray_id: str, task_label: str) -> Iterator[None]:
    """Make ``ray_id`` and ``task_label`` visible to every log record inside the block."""
    ray_token = ray_id_context.set(ray_id)
    label_token = task_label_context.set(task_label)
    try:
        yield
    finally:
        task_label_context.reset(label_token)
        ray_id_context.reset(ray_token)


class RayIDLoggerAdapter(logging.LoggerAdapter):
    """Stamps a fixed ray id on records.

    Used on the caller side of the queue, where the task's context is not bound.
    An explicit ``extra={"ray_id": ...}`` on a call wins over the adapter's id.
    """

    def __init__(self, logger: logging.Logger, ray_id: Optional[str] = None):
        super().__init__(logger, {"ray_id": ray_id or NO_RAY_ID})

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> tuple[str, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("ray_id", (self.extra or {}).get("ray_id", NO_RAY_ID))
        kwargs["extra"] = extra
        return msg, kwargs


def get_logger_with_ray_id(name: str, ray_id: Optional[str] = None) -> RayIDLoggerAdapter:
    return RayIDLoggerAdapter(logging.getLogger(name), ray_id)
