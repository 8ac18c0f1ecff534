"""Generation backend interface and its HTTP client."""

import asyncio
import json
import re
from typing import Any, Dict, Optional, Protocol

import aiohttp

from hydration_jobs.errors import (
    GenerationTimeoutError,
    GenerationTransportError,
    ParseFailedError,
)


class GenerationResult:
    """Raw output of one generation call."""

    def __init__(
        self,
        content: str,
        usage: Optional[Dict[str, Any]] = None,
        cost_usd: float = 0.0,
    ):
        self.content = content
        self.usage = usage or {}
        self.cost_usd = cost_usd


class GenerationBackend(Protocol):
    async def generate(
        self, prompt: str, meta: Dict[str, Any], timeout_ms: int
    ) -> GenerationResult:
        ...


class GenerationHttpClient:
    """HTTP client for the text generation service."""

    def __init__(self, base_url: str, auth_token: Optional[str] = None):
        """
        Initialize HTTP client.

        Args:
            base_url: Base URL of the generation service
            auth_token: Optional bearer token
        """
        self.base_url = base_url.rstrip("/")
        self.auth_token = auth_token

    async def generate(
        self, prompt: str, meta: Dict[str, Any], timeout_ms: int
    ) -> GenerationResult:
        """
        Run one generation request.

        Raises:
            GenerationTimeoutError: If the request exceeds timeout_ms
            GenerationTransportError: On network errors or error responses
        """
        url = f"{self.base_url}/generate"
        headers = {"Content-Type": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"

        timeout = aiohttp.ClientTimeout(total=timeout_ms / 1000)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            try:
                async with session.post(
                    url, json={"prompt": prompt, "meta": meta}, headers=headers
                ) as resp:
                    response_body = await resp.text()

                    if resp.status >= 400:
                        raise GenerationTransportError(
                            f"Generation request failed with {resp.status}: {response_body}",
                            status_code=resp.status,
                            response_body=response_body,
                        )

                    data = json.loads(response_body)
            except asyncio.TimeoutError as e:
                raise GenerationTimeoutError(
                    f"Generation timed out after {timeout_ms}ms"
                ) from e
            except aiohttp.ClientError as e:
                raise GenerationTransportError(f"Network error: {str(e)}") from e
            except json.JSONDecodeError as e:
                raise GenerationTransportError(
                    f"Generation service returned non-JSON body: {e}"
                ) from e

        return GenerationResult(
            content=data.get("content", ""),
            usage=data.get("usage"),
            cost_usd=float(data.get("cost_usd") or 0.0),
        )


_FENCE = re.compile(r"^```[a-zA-Z]*\s*\n?(.*?)\n?```\s*$", re.S)


def extract_json(text: str) -> Dict[str, Any]:
    """
    Pull a JSON object out of model output.

    Tolerates markdown code fences and prose around the object.

    Raises:
        ParseFailedError: If no JSON object can be decoded
    """
    if not isinstance(text, str) or not text.strip():
        raise ParseFailedError("empty_response")

    stripped = text.strip()
    fenced = _FENCE.match(stripped)
    if fenced:
        stripped = fenced.group(1).strip()

    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError:
        start = stripped.find("{")
        end = stripped.rfind("}")
        if start == -1 or end <= start:
            raise ParseFailedError("no JSON object in response")
        try:
            parsed = json.loads(stripped[start : end + 1])
        except json.JSONDecodeError as e:
            raise ParseFailedError(f"invalid JSON in response: {e}") from e

    if not isinstance(parsed, dict):
        raise ParseFailedError("response JSON is not an object")
    return parsed
