import logging
import os
import sys
from typing import Protocol

from loki_logger_handler.loki_logger_handler import LokiLoggerHandler

from disco_storage.services.ray_id_service import ray_id_context
from disco_storage.services.ray_id_service import task_label_context


TASK_LOG_FORMAT = "%(asctime)s - [%(ray_id)s] [%(task)s] - %(name)s - %(levelname)s - %(message)s"
PLAIN_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Libraries that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


class LoggingConfig(Protocol):
    log_level: str
    loki_enabled: bool
    loki_url: str
    environment: str


class TaskContextFilter(logging.Filter):
    """Fill ``ray_id`` and ``task`` on every record from the bound task context.

    Values passed explicitly through ``extra`` are left alone. Outside a task
    the defaults ('no-ray-id', '-') keep the format string valid.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "ray_id"):
            record.ray_id = ray_id_context.get()
        if not hasattr(record, "task"):
            record.task = task_label_context.get()
        return True


def setup_loki_logging(config: LoggingConfig, service_name: str, include_task_context: bool = True) -> logging.Logger:
    """
    Configure root logging for a disco-storage process.

    Args:
        config: Anything with log_level, loki_enabled, loki_url and environment
        service_name: Loki ``service`` label and name of the returned logger (e.g. "storage-cli")
        include_task_context: Prefix lines with the ray id and task label (default: True)

    Returns:
        Logger named after the service
    """
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if config.loki_enabled and config.loki_url:
        handlers.append(
            LokiLoggerHandler(
                url=config.loki_url,
                labels={
                    "service": service_name,
                    "environment": config.environment,
                    "host": os.getenv("HOSTNAME", "unknown"),
                },
                timeout=10,
                compressed=True,
            )
        )

    if include_task_context:
        task_filter = TaskContextFilter()
        for handler in handlers:
            handler.addFilter(task_filter)

    logging.basicConfig(
        level=log_level,
        format=TASK_LOG_FORMAT if include_task_context else PLAIN_LOG_FORMAT,
        handlers=handlers,
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    return logging.getLogger(service_name)
