"""Judge0 REST API sandbox for remote code execution."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import httpx

from algorun.errors import SandboxUnavailable
from algorun.models import SandboxResponse
from algorun.sandbox_base import (
    STATUS_IN_QUEUE,
    STATUS_PROCESSING,
    STATUS_TLE,
    status_message,
    with_echo_prelude,
)

logger = logging.getLogger(__name__)


@dataclass
class Judge0Config:
    base_url: str = "http://localhost:2358"
    api_key: str = ""
    rapidapi_key: str = ""
    rapidapi_host: str = "judge0-ce.p.rapidapi.com"
    language_id: int = 71  # Python 3
    cpu_time_limit: int = 10
    max_memory_mb: int = 256
    poll_interval: float = 0.5
    max_poll_attempts: int = 60


class Judge0Sandbox:
    """Submits code to a Judge0 instance and waits for the verdict."""

    def __init__(
        self,
        config: Judge0Config | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or Judge0Config()
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._config.api_key:
            headers["X-Auth-Token"] = self._config.api_key
        if self._config.rapidapi_key:
            headers["X-RapidAPI-Key"] = self._config.rapidapi_key
            headers["X-RapidAPI-Host"] = self._config.rapidapi_host
        return headers

    async def submit(
        self,
        source: str,
        stdin: str = "",
        expected_output: str | None = None,
        timeout_ms: int = 15000,
        echo_input: bool = False,
    ) -> SandboxResponse:
        code, prelude_lines = with_echo_prelude(source, echo_input)
        payload: dict = {
            "source_code": code,
            "language_id": self._config.language_id,
            "stdin": stdin,
            "cpu_time_limit": self._config.cpu_time_limit,
            "memory_limit": self._config.max_memory_mb * 1024,  # Judge0 expects KB
        }
        if expected_output is not None:
            payload["expected_output"] = expected_output

        base = self._config.base_url.rstrip("/")
        headers = self._headers()

        try:
            async with httpx.AsyncClient(
                timeout=timeout_ms / 1000 + 5,  # the harness enforces the real deadline
                transport=self._transport,
            ) as client:
                # Try synchronous submission (wait=true)
                resp = await client.post(
                    f"{base}/submissions?base64_encoded=false&wait=true",
                    json=payload,
                    headers=headers,
                )
                resp.raise_for_status()
                data = resp.json()

                # If we got a token but no status, the server didn't wait; poll
                if "status" not in data or data.get("status", {}).get("id") in (
                    STATUS_IN_QUEUE,
                    STATUS_PROCESSING,
                ):
                    token = data.get("token", "")
                    if not token:
                        raise SandboxUnavailable("Judge0 returned neither a result nor a token")
                    data = await self._poll(client, token, headers, base)

        except httpx.TimeoutException:
            return SandboxResponse(
                status_code=STATUS_TLE,
                stderr="Judge0 request timed out",
                description=status_message(STATUS_TLE),
                prelude_lines=prelude_lines,
            )
        except (httpx.HTTPStatusError, httpx.TransportError, ValueError) as e:
            logger.error("Judge0 request failed: %s", e)
            raise SandboxUnavailable(f"Judge0 is unavailable: {e}") from e

        response = self._parse_response(data)
        response.prelude_lines = prelude_lines
        return response

    async def _poll(self, client: httpx.AsyncClient, token: str, headers: dict[str, str], base: str) -> dict:
        for _ in range(self._config.max_poll_attempts):
            await asyncio.sleep(self._config.poll_interval)
            resp = await client.get(
                f"{base}/submissions/{token}?base64_encoded=false",
                headers=headers,
            )
            resp.raise_for_status()
            data = resp.json()
            status_id = data.get("status", {}).get("id", 0)
            if status_id not in (STATUS_IN_QUEUE, STATUS_PROCESSING):
                return data
        return {"status": {"id": STATUS_TLE}, "stdout": "", "stderr": "Poll timeout"}

    def _parse_response(self, data: dict) -> SandboxResponse:
        status = data.get("status") or {}
        status_id = status.get("id", 0)
        stderr = data.get("stderr") or data.get("compile_output") or ""
        time_s = data.get("time")
        try:
            time_ms = float(time_s) * 1000 if time_s is not None else None
        except (TypeError, ValueError):
            time_ms = None
        return SandboxResponse(
            status_code=status_id,
            stdout=data.get("stdout") or "",
            stderr=stderr,
            time_ms=time_ms,
            description=status.get("description") or status_message(status_id),
        )
