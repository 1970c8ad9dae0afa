from __future__ import annotations

import json
import logging
import random
from pathlib import Path

import httpx
import pytest

from promptbatch.core.generation import (
    Attachment,
    GenerationClient,
    GenerationError,
    GenerationOptions,
    SimulatedGenerationClient,
    build_client,
    build_prompt,
    extract_image_url,
    load_attachments,
)
from promptbatch.core.retry_policy import RetryPolicy

LOGGER = logging.getLogger("promptbatch.test")


def _client(handler) -> GenerationClient:
    return GenerationClient(
        base_url="https://images.test",
        api_key="secret",
        model="sora_image",
        timeout=5,
        logger=LOGGER,
        transport=httpx.MockTransport(handler),
    )


def _completion(content: str, **extra) -> dict:
    return {"choices": [{"message": {"content": content}}], **extra}


def test_build_prompt_only_uses_mentioned_attachments() -> None:
    attachments = [
        Attachment(name="alice.png", data=b"a", mime_type="image/png"),
        Attachment(name="bob.jpg", data=b"b", mime_type="image/jpeg"),
    ]

    text, used = build_prompt("ALICE walks in the park", attachments)

    assert used == [attachments[0]]
    assert text == "ALICE walks in the park\nalice uses the character shown in image 1"


def test_build_prompt_appends_style_and_ratio() -> None:
    options = GenerationOptions(style="oil painting", aspect_ratio="3:2")
    text, used = build_prompt("a harbour", (), options)
    assert used == []
    assert text == "a harbour\nStyle: oil painting\nAspect ratio: 3:2"


def test_extract_image_url_prefers_download_link() -> None:
    content = "![图片](https://cdn.test/preview.png)\n[点击下载](https://cdn.test/full.png)"
    assert extract_image_url(content) == "https://cdn.test/full.png"
    assert extract_image_url("![img](https://cdn.test/a.png)") == "https://cdn.test/a.png"
    assert extract_image_url("no link here") is None


def test_attachment_data_url() -> None:
    attachment = Attachment(name="cat.png", data=b"\x89PNG", mime_type="image/png")
    assert attachment.stem == "cat"
    assert attachment.to_data_url() == "data:image/png;base64,iVBORw=="


def test_load_attachments_reads_files(tmp_path: Path) -> None:
    image = tmp_path / "hero.png"
    image.write_bytes(b"data")

    [attachment] = load_attachments([image])

    assert attachment.name == "hero.png" and attachment.mime_type == "image/png"
    with pytest.raises(FileNotFoundError):
        load_attachments([tmp_path / "missing.png"])


@pytest.mark.asyncio
async def test_generate_posts_chat_completion_and_parses_url() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_completion("done [点击下载](https://cdn.test/1.png)", id="gen-1"))

    client = _client(handler)
    attachment = Attachment(name="robot.png", data=b"x", mime_type="image/png")
    try:
        result = await client.generate("a robot", attachments=[attachment])
    finally:
        await client.aclose()

    assert result.result_reference == "https://cdn.test/1.png"
    assert result.remote_id == "gen-1"
    assert seen["path"] == "/v1/chat/completions"
    assert seen["auth"] == "Bearer secret"
    body = seen["body"]
    assert body["model"] == "sora_image" and body["stream"] is False
    assert body["messages"][0]["role"] == "system"
    parts = body["messages"][1]["content"]
    assert parts[0]["type"] == "text" and parts[0]["text"].startswith("a robot\nrobot uses")
    assert parts[1]["image_url"]["url"].startswith("data:image/png;base64,")


@pytest.mark.asyncio
async def test_http_error_status_becomes_retryable_generation_error() -> None:
    client = _client(lambda request: httpx.Response(429, text="slow down"))
    try:
        with pytest.raises(GenerationError) as excinfo:
            await client.generate("a cat")
    finally:
        await client.aclose()

    assert str(excinfo.value) == "HTTP 429: slow down"
    assert RetryPolicy().is_retryable(str(excinfo.value))


@pytest.mark.asyncio
async def test_error_payload_and_missing_url_are_reported() -> None:
    client = _client(lambda request: httpx.Response(200, json={"error": {"message": "bad prompt"}}))
    with pytest.raises(GenerationError, match="API Error: bad prompt"):
        await client.generate("a cat")
    await client.aclose()

    client = _client(lambda request: httpx.Response(200, json=_completion("sorry, no image")))
    with pytest.raises(GenerationError, match="No image URL"):
        await client.generate("a cat")
    await client.aclose()


@pytest.mark.asyncio
async def test_transport_errors_are_classified_as_network() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    try:
        with pytest.raises(GenerationError) as excinfo:
            await client.generate("a cat")
    finally:
        await client.aclose()
    assert str(excinfo.value).startswith("Network error:")


@pytest.mark.asyncio
async def test_simulated_client_success_and_failures() -> None:
    ok = SimulatedGenerationClient(logger=LOGGER, delay_seconds=0, failure_rate=0, rate_limit_rate=0)
    result = await ok.generate("blue cat")
    assert result.result_reference.startswith("https://picsum.photos/512/512?random=")
    assert "prompt=blue%20cat" in result.result_reference

    failing = SimulatedGenerationClient(
        logger=LOGGER, delay_seconds=0, failure_rate=1.0, random_source=random.Random(1)
    )
    with pytest.raises(GenerationError) as excinfo:
        await failing.generate("blue cat")
    assert RetryPolicy().is_retryable(str(excinfo.value))

    with pytest.raises(GenerationError, match="prompt is required"):
        await ok.generate("  ")


@pytest.mark.asyncio
async def test_build_client_selects_provider(monkeypatch) -> None:
    monkeypatch.setenv("PROMPTBATCH_TEST_KEY", "from-env")
    simulated = build_client({"service": {"provider": "simulated"}, "simulation": {"seed": 3}}, LOGGER)
    assert isinstance(simulated, SimulatedGenerationClient)

    client = build_client(
        {
            "service": {
                "provider": "openai",
                "base_url": "https://images.test/",
                "api_key_env": "PROMPTBATCH_TEST_KEY",
                "timeout": 10,
            },
            "generation": {"style": "anime"},
        },
        LOGGER,
    )
    try:
        assert isinstance(client, GenerationClient)
        assert client.base_url == "https://images.test"
        assert client.options.style == "anime"
        assert client._client.headers["Authorization"] == "Bearer from-env"
    finally:
        await client.aclose()

    with pytest.raises(ValueError):
        build_client({"service": {"provider": "unknown"}}, LOGGER)
