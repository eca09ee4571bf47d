"""
Channel API client.

HTTP client for a Discord-compatible REST API, used purely as a blob
backend: chunk batches are posted as messages with attachments to a single
channel, read back through the attachment CDN URLs, and deleted by message id.

Endpoints used:
    POST   /channels/{channel_id}/messages
    GET    /channels/{channel_id}/messages/{message_id}
    DELETE /channels/{channel_id}/messages/{message_id}
    GET    <attachment url>
"""

import asyncio
import functools
import json
import logging
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Callable
from typing import Coroutine
from typing import Dict
from typing import List
from typing import Optional
from typing import Protocol
from typing import Sequence
from typing import TypeVar

import httpx
from pydantic import BaseModel
from pydantic import Field

from disco_storage.config import Config
from disco_storage.config import get_config


logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChannelAttachment(BaseModel):
    id: int
    filename: str
    size: int = 0
    url: str
    content_type: Optional[str] = None


class ChannelMessage(BaseModel):
    id: int
    channel_id: Optional[int] = None
    attachments: List[ChannelAttachment] = Field(default_factory=list)


@dataclass
class AttachmentUpload:
    filename: str
    content: bytes = field(repr=False)


class ChannelAPIError(Exception):
    """Raised when the channel API rejects or fails a request."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ChannelNotFoundError(ChannelAPIError):
    """The message (or channel) does not exist."""


class ChannelAuthenticationError(ChannelAPIError):
    """The bot token was rejected."""


class ChannelRateLimitError(ChannelAPIError):
    """Still rate limited after every retry was spent."""


class ChannelBackend(Protocol):
    """Minimum channel surface the storage workers depend on."""

    async def send_message(self, channel_id: int, attachments: Sequence[AttachmentUpload]) -> ChannelMessage: ...

    async def get_message(self, channel_id: int, message_id: int) -> ChannelMessage: ...

    async def delete_message(self, channel_id: int, message_id: int) -> None: ...

    async def download_attachment(self, url: str) -> bytes: ...


def _retry_after_seconds(response: httpx.Response, fallback: float) -> float:
    try:
        body = response.json()
        if isinstance(body, dict) and body.get("retry_after") is not None:
            return max(0.0, float(body["retry_after"]))
    except (ValueError, json.JSONDecodeError):
        pass
    header = response.headers.get("Retry-After")
    if header:
        try:
            return max(0.0, float(header))
        except ValueError:
            pass
    return fallback


def retry_on_error(
    func: Callable[..., Coroutine[Any, Any, T]],
) -> Callable[..., Coroutine[Any, Any, T]]:
    """
    Retry a client call on rate limits, 5xx responses and transport errors.

    The retry budget and backoff come from the client instance. 404 and
    401/403 are translated to their dedicated exceptions without retrying;
    any other 4xx is raised as ``ChannelAPIError`` straight away.
    """

    @functools.wraps(func)
    async def wrapper(self: "ChannelClient", *args: Any, **kwargs: Any) -> T:
        retries = self.max_retries
        backoff = self.retry_backoff_seconds
        last_exception: Exception | None = None

        for attempt in range(retries + 1):
            try:
                return await func(self, *args, **kwargs)
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                last_exception = e

                if status == 404:
                    raise ChannelNotFoundError(f"{func.__name__}: not found", status_code=404) from e
                if status in (401, 403):
                    raise ChannelAuthenticationError(
                        f"{func.__name__}: authentication failed ({status})", status_code=status
                    ) from e
                if status != 429 and status < 500:
                    raise ChannelAPIError(
                        f"{func.__name__}: request rejected ({status}): {e.response.text}", status_code=status
                    ) from e

                if attempt == retries:
                    break

                sleep_for = _retry_after_seconds(e.response, backoff) if status == 429 else backoff
                logger.warning(
                    f"Request failed (attempt {attempt + 1}/{retries + 1}) | Function: {func.__name__} "
                    f"| status={status} | retrying in {sleep_for:.2f}s | Response body: {e.response.text}"
                )
                await asyncio.sleep(sleep_for)
            except httpx.TransportError as e:
                last_exception = e
                if attempt == retries:
                    break
                logger.warning(
                    f"Request failed (attempt {attempt + 1}/{retries + 1}) | Function: {func.__name__} "
                    f"| {type(e).__name__}: {e} | retrying in {backoff:.2f}s"
                )
                await asyncio.sleep(backoff)

        if isinstance(last_exception, httpx.HTTPStatusError):
            status = last_exception.response.status_code
            error_cls = ChannelRateLimitError if status == 429 else ChannelAPIError
            raise error_cls(
                f"{func.__name__}: failed after {retries + 1} attempts ({status})", status_code=status
            ) from last_exception
        if last_exception is not None:
            raise ChannelAPIError(
                f"{func.__name__}: failed after {retries + 1} attempts: {last_exception}"
            ) from last_exception
        raise ChannelAPIError(f"{func.__name__}: all retries failed with no exception captured")

    return wrapper


class ChannelClient:
    """
    HTTP client for the channel API.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        bot_token: Optional[str] = None,
        *,
        config: Optional[Config] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the channel client.

        Args:
            base_url: Optional API base URL. Falls back to config if not provided.
            bot_token: Optional bot token. Falls back to config if not provided.
            config: Optional configuration; loaded from the environment when omitted.
            transport: Optional httpx transport (tests use ``httpx.MockTransport``).
        """
        self._config = config or get_config()
        self.api_url = (base_url or self._config.channel_api_url).rstrip("/")
        self._bot_token = bot_token if bot_token is not None else self._config.bot_token
        self.max_retries = int(self._config.http_max_retries)
        self.retry_backoff_seconds = float(self._config.http_retry_backoff_seconds)
        self.max_attachments = int(self._config.channel_max_attachments)
        self.max_message_size = int(self._config.max_message_size)
        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            timeout=self._config.http_timeout,
            follow_redirects=True,
            transport=transport,
        )

    async def __aenter__(self) -> "ChannelClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    def _get_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bot {self._bot_token}"}

    @retry_on_error
    async def send_message(self, channel_id: int, attachments: Sequence[AttachmentUpload]) -> ChannelMessage:
        """
        Post one message carrying ``attachments``.

        Maps to: POST /channels/{channel_id}/messages

        Raises:
            ChannelAPIError: If the batch breaks the channel limits or the request fails
        """
        if not attachments:
            raise ChannelAPIError("send_message: at least one attachment is required")
        if len(attachments) > self.max_attachments:
            raise ChannelAPIError(
                f"send_message: {len(attachments)} attachments exceeds the limit of {self.max_attachments}"
            )
        total_size = sum(len(a.content) for a in attachments)
        if total_size > self.max_message_size:
            raise ChannelAPIError(
                f"send_message: message size {total_size} exceeds the limit of {self.max_message_size}"
            )

        payload = {"attachments": [{"id": i, "filename": a.filename} for i, a in enumerate(attachments)]}
        files = [
            (f"files[{i}]", (a.filename, a.content, "application/octet-stream"))
            for i, a in enumerate(attachments)
        ]
        response = await self._client.post(
            f"/channels/{channel_id}/messages",
            data={"payload_json": json.dumps(payload)},
            files=files,
            headers=self._get_headers(),
        )
        response.raise_for_status()
        return ChannelMessage.model_validate(response.json())

    @retry_on_error
    async def get_message(self, channel_id: int, message_id: int) -> ChannelMessage:
        """
        Fetch one message with its attachment list.

        Maps to: GET /channels/{channel_id}/messages/{message_id}

        Raises:
            ChannelNotFoundError: If the message no longer exists
        """
        response = await self._client.get(
            f"/channels/{channel_id}/messages/{message_id}",
            headers=self._get_headers(),
        )
        response.raise_for_status()
        return ChannelMessage.model_validate(response.json())

    @retry_on_error
    async def delete_message(self, channel_id: int, message_id: int) -> None:
        """
        Delete one message.

        Maps to: DELETE /channels/{channel_id}/messages/{message_id}

        Raises:
            ChannelNotFoundError: If the message was already deleted
        """
        response = await self._client.delete(
            f"/channels/{channel_id}/messages/{message_id}",
            headers=self._get_headers(),
        )
        response.raise_for_status()

    @retry_on_error
    async def download_attachment(self, url: str) -> bytes:
        """Download attachment bytes from its (ephemeral) CDN URL without bot credentials."""
        response = await self._client.get(url)
        response.raise_for_status()
        return response.content
