import dataclasses

import dotenv
import httpx

from disco_storage.utils import env
from disco_storage.utils import to_bool


dotenv.load_dotenv()


MIB = 1024 * 1024


@dataclasses.dataclass
class Config:
    """Application configuration settings."""

    # Channel API
    channel_api_url: str = env("DISCO_CHANNEL_API_URL:https://discord.com/api/v10")
    bot_token: str = env("DISCO_BOT_TOKEN")
    # Single fixed destination for all chunk traffic
    channel_id: int = env("DISCO_CHANNEL_ID", convert=int)

    # Chunking
    max_chunk_size: int = env(f"DISCO_MAX_CHUNK_SIZE_BYTES:{8 * MIB}", convert=int)
    max_attachments_per_message: int = env("DISCO_MAX_ATTACHMENTS_PER_MESSAGE:1", convert=int)

    # Channel limits
    max_message_size: int = env(f"DISCO_MAX_MESSAGE_SIZE_BYTES:{25 * MIB}", convert=int)
    channel_max_attachments: int = env("DISCO_CHANNEL_MAX_ATTACHMENTS:10", convert=int)
    # 0 = no limit on concurrent channel calls within one operation
    max_concurrency: int = env("DISCO_MAX_CONCURRENCY:0", convert=int)

    # HTTP client behaviour
    http_max_retries: int = env("DISCO_HTTP_MAX_RETRIES:3", convert=int)
    http_retry_backoff_seconds: float = env("DISCO_HTTP_RETRY_BACKOFF_SECONDS:1.0", convert=float)
    http_timeout_seconds: float = env("DISCO_HTTP_TIMEOUT_SECONDS:60.0", convert=float)

    # Metadata catalog used by the CLI
    catalog_path: str = env("DISCO_CATALOG_PATH:./disco_catalog.json")

    # Logging
    log_level: str = env("LOG_LEVEL:INFO")
    loki_url: str = env("LOKI_URL:", convert=str)
    loki_enabled: bool = env("LOKI_ENABLED:false", convert=to_bool)

    environment: str = env("ENVIRONMENT:development")

    # worker specific settings
    worker_stop_timeout_seconds = 30.0

    @property
    def http_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.http_timeout_seconds, connect=10.0)


@dataclasses.dataclass(frozen=True)
class StorageConfig:
    """Explicit settings handed to the uploader, downloader and deleter."""

    channel_id: int
    max_chunk_size: int = 8 * MIB
    max_attachments_per_message: int = 1
    max_message_size: int = 25 * MIB
    channel_max_attachments: int = 10
    max_concurrency: int = 0

    @classmethod
    def from_config(cls, config: Config) -> "StorageConfig":
        return cls(
            channel_id=int(config.channel_id),
            max_chunk_size=int(config.max_chunk_size),
            max_attachments_per_message=int(config.max_attachments_per_message),
            max_message_size=int(config.max_message_size),
            channel_max_attachments=int(config.channel_max_attachments),
            max_concurrency=int(config.max_concurrency),
        )

    def validation_problems(self) -> list[str]:
        """Return human readable reasons why this configuration cannot store objects."""
        problems = []
        if self.max_chunk_size <= 0:
            problems.append(f"max_chunk_size must be positive, got {self.max_chunk_size}")
        if not 1 <= self.max_attachments_per_message <= self.channel_max_attachments:
            problems.append(
                f"max_attachments_per_message must be within 1..{self.channel_max_attachments}, "
                f"got {self.max_attachments_per_message}"
            )
        if self.max_chunk_size * self.max_attachments_per_message > self.max_message_size:
            problems.append(
                f"a full batch ({self.max_attachments_per_message} x {self.max_chunk_size} bytes) "
                f"exceeds max_message_size={self.max_message_size}"
            )
        if self.max_concurrency < 0:
            problems.append(f"max_concurrency must be >= 0, got {self.max_concurrency}")
        return problems


def get_config() -> Config:
    """Get application configuration."""
    cfg = Config()

    env_value = getattr(cfg, "environment", None)
    if not env_value or not env_value.strip():
        raise ValueError("ENVIRONMENT variable is required but not set or empty")

    if not cfg.bot_token or not cfg.bot_token.strip():
        raise ValueError("DISCO_BOT_TOKEN is required but not set or empty")

    problems = StorageConfig.from_config(cfg).validation_problems()
    if problems:
        raise ValueError("Invalid storage configuration: " + "; ".join(problems))

    # Normalize the API base url so path joins stay predictable
    object.__setattr__(cfg, "channel_api_url", cfg.channel_api_url.rstrip("/"))

    return cfg
