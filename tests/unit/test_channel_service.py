import dataclasses
import json

import httpx
import pytest

from disco_storage.config import Config
from disco_storage.services.channel_service import AttachmentUpload
from disco_storage.services.channel_service import ChannelAPIError
from disco_storage.services.channel_service import ChannelAuthenticationError
from disco_storage.services.channel_service import ChannelClient
from disco_storage.services.channel_service import ChannelNotFoundError
from disco_storage.services.channel_service import ChannelRateLimitError


API = "https://channel.test/api/v10"


def _message_json(message_id=900, filenames=("f.bin.part1",)):
    return {
        "id": str(message_id),
        "channel_id": "42",
        "content": "",
        "attachments": [
            {
                "id": str(message_id * 10 + i),
                "filename": name,
                "size": 4,
                "url": f"https://cdn.channel.test/attachments/42/{message_id}/{name}",
                "proxy_url": "https://media.channel.test/ignored",
            }
            for i, name in enumerate(filenames)
        ],
    }


@pytest.fixture
def config() -> Config:
    return dataclasses.replace(
        Config(),
        channel_api_url=API,
        bot_token="test-bot-token",
        http_max_retries=2,
        http_retry_backoff_seconds=0.0,
    )


def _client(config, handler) -> ChannelClient:
    return ChannelClient(config=config, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_send_message_posts_multipart_with_bot_auth(config):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_message_json(901, ["a.part1", "a.part2"]))

    async with _client(config, handler) as client:
        message = await client.send_message(
            42, [AttachmentUpload("a.part1", b"abcd"), AttachmentUpload("a.part2", b"ef")]
        )

    assert message.id == 901
    assert [a.filename for a in message.attachments] == ["a.part1", "a.part2"]
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/api/v10/channels/42/messages"
    assert request.headers["Authorization"] == "Bot test-bot-token"
    body = request.content
    assert b'name="payload_json"' in body
    assert b'name="files[0]"; filename="a.part1"' in body
    assert b'name="files[1]"; filename="a.part2"' in body
    payload = {"attachments": [{"id": 0, "filename": "a.part1"}, {"id": 1, "filename": "a.part2"}]}
    assert json.dumps(payload).encode() in body


@pytest.mark.asyncio
async def test_send_message_rejects_too_many_attachments(config):
    config = dataclasses.replace(config, channel_max_attachments=2)

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    async with _client(config, handler) as client:
        with pytest.raises(ChannelAPIError, match="exceeds the limit of 2"):
            await client.send_message(42, [AttachmentUpload(f"p{i}", b"x") for i in range(3)])


@pytest.mark.asyncio
async def test_send_message_rejects_oversized_message(config):
    config = dataclasses.replace(config, max_message_size=4)

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    async with _client(config, handler) as client:
        with pytest.raises(ChannelAPIError, match="message size 5"):
            await client.send_message(42, [AttachmentUpload("p1", b"12345")])


@pytest.mark.asyncio
async def test_get_message_parses_snowflake_ids(config):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v10/channels/42/messages/1313525215837294644"
        return httpx.Response(200, json=_message_json(1313525215837294644))

    async with _client(config, handler) as client:
        message = await client.get_message(42, 1313525215837294644)

    assert message.id == 1313525215837294644
    assert message.attachments[0].url.startswith("https://cdn.channel.test/")


@pytest.mark.asyncio
async def test_get_message_not_found(config):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(404, json={"message": "Unknown Message", "code": 10008})

    async with _client(config, handler) as client:
        with pytest.raises(ChannelNotFoundError) as exc_info:
            await client.get_message(42, 1)

    assert exc_info.value.status_code == 404
    assert len(calls) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 403])
async def test_auth_failures_are_not_retried(config, status):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(status, json={"message": "401: Unauthorized"})

    async with _client(config, handler) as client:
        with pytest.raises(ChannelAuthenticationError):
            await client.delete_message(42, 1)

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_bad_request_is_not_retried(config):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(400, json={"message": "Invalid Form Body"})

    async with _client(config, handler) as client:
        with pytest.raises(ChannelAPIError) as exc_info:
            await client.send_message(42, [AttachmentUpload("p1", b"x")])

    assert exc_info.value.status_code == 400
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_rate_limit_is_retried_after_delay(config):
    responses = iter(
        [
            httpx.Response(429, json={"message": "You are being rate limited.", "retry_after": 0.0, "global": False}),
            httpx.Response(204),
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return next(responses)

    async with _client(config, handler) as client:
        assert await client.delete_message(42, 1) is None


@pytest.mark.asyncio
async def test_rate_limit_exhausted(config):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(429, headers={"Retry-After": "0"}, json={"message": "slow down"})

    async with _client(config, handler) as client:
        with pytest.raises(ChannelRateLimitError) as exc_info:
            await client.get_message(42, 1)

    assert exc_info.value.status_code == 429
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_server_errors_exhaust_retries(config):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(502, text="Bad Gateway")

    async with _client(config, handler) as client:
        with pytest.raises(ChannelAPIError, match="failed after 3 attempts"):
            await client.get_message(42, 1)

    assert len(calls) == 3


@pytest.mark.asyncio
async def test_transport_errors_are_retried(config):
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) < 3:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json=_message_json(77))

    async with _client(config, handler) as client:
        message = await client.get_message(42, 77)

    assert message.id == 77
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_download_attachment_skips_bot_credentials(config):
    seen = []
    url = "https://cdn.channel.test/attachments/42/900/f.bin.part1?ex=abc"

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"\x00\x01chunk")

    async with _client(config, handler) as client:
        content = await client.download_attachment(url)

    assert content == b"\x00\x01chunk"
    assert seen[0].url.host == "cdn.channel.test"
    assert "Authorization" not in seen[0].headers


def test_client_strips_trailing_slash(config):
    client = ChannelClient(base_url=API + "/", bot_token="other", config=config)

    assert client.api_url == API
    assert client._get_headers() == {"Authorization": "Bot other"}
