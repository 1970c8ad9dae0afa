"""Clients for the remote image-generation service."""

from __future__ import annotations

import asyncio
import base64
import logging
import mimetypes
import os
import random
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Protocol, Sequence, Tuple
from urllib.parse import quote
from uuid import uuid4

import httpx

DOWNLOAD_LINK_PATTERN = re.compile(r"\[点击下载\]\((.*?)\)")
MARKDOWN_IMAGE_PATTERN = re.compile(r"!\[[^\]]*\]\((.*?)\)")
DEFAULT_ATTACHMENT_HINT = "\n{name} uses the character shown in image {index}"


class GenerationError(Exception):
    """Categorized failure surfaced by a generation service.

    The message is the only category carrier; retry classification is lexical.
    """


@dataclass(frozen=True)
class GenerationResult:
    result_reference: str
    remote_id: str | None = None
    elapsed: float = 0.0


@dataclass(frozen=True)
class Attachment:
    name: str
    data: bytes
    mime_type: str = "application/octet-stream"

    @property
    def stem(self) -> str:
        return Path(self.name).stem

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


@dataclass(frozen=True)
class GenerationOptions:
    style: str = ""
    aspect_ratio: str | None = None
    attachment_hint: str = DEFAULT_ATTACHMENT_HINT

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "GenerationOptions":
        return cls(
            style=str(config.get("style") or ""),
            aspect_ratio=config.get("aspect_ratio") or None,
            attachment_hint=str(config.get("attachment_hint") or DEFAULT_ATTACHMENT_HINT),
        )


class GenerationService(Protocol):
    async def generate(
        self,
        prompt: str,
        *,
        attachments: Sequence[Attachment] = (),
        options: GenerationOptions | None = None,
    ) -> GenerationResult:
        ...

    async def aclose(self) -> None:
        ...


def load_attachments(paths: Iterable[str | Path]) -> List[Attachment]:
    attachments: List[Attachment] = []
    for raw in paths:
        path = Path(raw)
        if not path.is_file():
            raise FileNotFoundError(f"Attachment not found: {path}")
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        attachments.append(Attachment(name=path.name, data=path.read_bytes(), mime_type=mime_type))
    return attachments


def build_prompt(
    prompt: str,
    attachments: Sequence[Attachment] = (),
    options: GenerationOptions | None = None,
) -> Tuple[str, List[Attachment]]:
    """Return the final prompt text and the attachments it refers to.

    An attachment is only sent when its file stem occurs in the prompt
    (case-insensitive). Each sent attachment adds a hint line carrying its
    1-based position among the sent images.
    """

    options = options or GenerationOptions()
    text = prompt
    lowered = prompt.lower()
    used: List[Attachment] = []
    for attachment in attachments:
        if attachment.stem.lower() not in lowered:
            continue
        used.append(attachment)
        text += options.attachment_hint.format(name=attachment.stem, index=len(used))
    if options.style:
        text += f"\nStyle: {options.style}"
    if options.aspect_ratio:
        text += f"\nAspect ratio: {options.aspect_ratio}"
    return text, used


def extract_image_url(content: str) -> str | None:
    for pattern in (DOWNLOAD_LINK_PATTERN, MARKDOWN_IMAGE_PATTERN):
        match = pattern.search(content or "")
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None


def extract_text(payload: Mapping[str, Any]) -> str:
    choices = payload.get("choices") if isinstance(payload, Mapping) else None
    if isinstance(choices, list) and choices:
        message = choices[0]
        if isinstance(message, Mapping):
            content = message.get("message")
            if isinstance(content, Mapping):
                text = content.get("content")
                if isinstance(text, str):
                    return text.strip()
    return ""


class GenerationClient:
    """Async client for an OpenAI-compatible chat-completions image endpoint."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        model: str,
        timeout: float,
        logger: logging.Logger,
        endpoint: str = "/v1/chat/completions",
        system_prompt: str = "You are a helpful assistant.",
        options: GenerationOptions | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.endpoint = endpoint
        self.model = model
        self.system_prompt = system_prompt
        self.options = options or GenerationOptions()
        self.logger = logger
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    def build_payload(self, prompt: str, attachments: Sequence[Attachment]) -> Dict[str, Any]:
        content: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
        for attachment in attachments:
            content.append({"type": "image_url", "image_url": {"url": attachment.to_data_url()}})
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": content},
            ],
            "stream": False,
        }

    async def generate(
        self,
        prompt: str,
        *,
        attachments: Sequence[Attachment] = (),
        options: GenerationOptions | None = None,
    ) -> GenerationResult:
        text, used = build_prompt(prompt, attachments, options or self.options)
        payload = self.build_payload(text, used)
        start = time.perf_counter()
        try:
            response = await self._client.post(self.endpoint, json=payload)
        except httpx.TimeoutException as exc:
            raise GenerationError(f"Request timeout: {exc}") from exc
        except httpx.HTTPError as exc:
            raise GenerationError(f"Network error: {exc}") from exc
        elapsed = time.perf_counter() - start

        if response.is_error:
            self.logger.error("%s responded with HTTP %s", self.endpoint, response.status_code)
            raise GenerationError(f"HTTP {response.status_code}: {response.text}")
        try:
            data = response.json()
        except ValueError as exc:
            raise GenerationError("Failed to parse API response: invalid JSON") from exc
        if not isinstance(data, Mapping):
            raise GenerationError("Failed to parse API response: unexpected payload")
        error = data.get("error")
        if error:
            if isinstance(error, Mapping):
                error = error.get("message") or error
            raise GenerationError(f"API Error: {error}")

        url = extract_image_url(extract_text(data))
        if not url:
            raise GenerationError("No image URL found in response")
        remote_id = str(data.get("id") or f"task_{uuid4().hex[:12]}")
        self.logger.debug("%s responded in %.2fs with %s", self.model, elapsed, url)
        return GenerationResult(result_reference=url, remote_id=remote_id, elapsed=elapsed)

    async def aclose(self) -> None:
        await self._client.aclose()


class SimulatedGenerationClient:
    """Offline service with the latency and failure profile of the real one."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        delay_seconds: float = 2.0,
        failure_rate: float = 0.1,
        rate_limit_rate: float = 0.05,
        options: GenerationOptions | None = None,
        random_source: random.Random | None = None,
    ) -> None:
        self.logger = logger
        self.delay_seconds = delay_seconds
        self.failure_rate = failure_rate
        self.rate_limit_rate = rate_limit_rate
        self.options = options or GenerationOptions()
        self.random = random_source or random.Random()
        self.calls = 0

    async def generate(
        self,
        prompt: str,
        *,
        attachments: Sequence[Attachment] = (),
        options: GenerationOptions | None = None,
    ) -> GenerationResult:
        if not prompt or not prompt.strip():
            raise GenerationError("HTTP 400: Invalid request: prompt is required")
        text, _ = build_prompt(prompt, attachments, options or self.options)
        self.calls += 1
        start = time.perf_counter()
        await asyncio.sleep(self.delay_seconds)
        if self.random.random() < self.failure_rate:
            raise GenerationError("HTTP 500: Generation failed: Service temporarily unavailable")
        if self.random.random() < self.rate_limit_rate:
            raise GenerationError("HTTP 429: Rate limited: Please slow down your requests")
        token = f"{int(time.time() * 1000)}{self.calls}"
        url = f"https://picsum.photos/512/512?random={token}&prompt={quote(text)}"
        return GenerationResult(
            result_reference=url,
            remote_id=f"task_{uuid4().hex[:12]}",
            elapsed=time.perf_counter() - start,
        )

    async def aclose(self) -> None:
        return None


def build_client(config: Mapping[str, Any], logger: logging.Logger) -> GenerationService:
    """Create the generation client selected by ``service.provider``."""

    service = config.get("service", {})
    options = GenerationOptions.from_config(config.get("generation", {}))
    provider = str(service.get("provider", "openai")).lower()
    if provider == "simulated":
        simulation = config.get("simulation", {})
        seed = simulation.get("seed")
        return SimulatedGenerationClient(
            logger=logger,
            delay_seconds=float(simulation.get("delay_seconds", 2.0)),
            failure_rate=float(simulation.get("failure_rate", 0.1)),
            rate_limit_rate=float(simulation.get("rate_limit_rate", 0.05)),
            options=options,
            random_source=random.Random(seed) if seed is not None else None,
        )
    if provider != "openai":
        raise ValueError(f"Unknown service provider: {provider}")
    api_key = service.get("api_key") or os.getenv(str(service.get("api_key_env") or ""), "")
    if not api_key:
        logger.warning("No API key configured; requests will likely be rejected.")
    return GenerationClient(
        base_url=str(service.get("base_url")),
        api_key=str(api_key),
        model=str(service.get("model", "sora_image")),
        timeout=float(service.get("timeout", 300)),
        logger=logger,
        endpoint=str(service.get("endpoint", "/v1/chat/completions")),
        system_prompt=str(service.get("system_prompt", "You are a helpful assistant.")),
        options=options,
    )


__all__ = [
    "Attachment",
    "GenerationClient",
    "GenerationError",
    "GenerationOptions",
    "GenerationResult",
    "GenerationService",
    "SimulatedGenerationClient",
    "build_client",
    "build_prompt",
    "extract_image_url",
    "load_attachments",
]
