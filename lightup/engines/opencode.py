"""
Lightup OpenCode Client

HTTP client wrapper for the OpenCode agent runtime.
Handles session creation, prompting, aborts and the server-sent event stream.
"""

import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from lightup.config import Config, get_config
from lightup.errors import AgentRuntimeError
from lightup.logging import get_logger

logger = get_logger(__name__)


@dataclass
class OpenCodeConfig:
    """OpenCode connection configuration."""
    base_url: str
    connect_timeout: float = 5.0

    @classmethod
    def from_config(cls, config: Config) -> "OpenCodeConfig":
        return cls(base_url=config.opencode_url, connect_timeout=config.opencode_connect_timeout)


class OpenCodeClient:
    """
    HTTP client for the OpenCode runtime.

    Requests use a short connect timeout and no read timeout: prompts are
    accepted asynchronously and progress arrives on the event stream.

    Example:
        client = OpenCodeClient()
        session_id = client.create_session("/repos/app")
        client.prompt_async(session_id, "Read the plan and start.")
    """

    def __init__(
        self,
        config: Optional[OpenCodeConfig] = None,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        async_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config or OpenCodeConfig.from_config(get_config())
        self._transport = transport
        self._async_transport = async_transport
        self._client: Optional[httpx.Client] = None

    @property
    def timeout(self) -> httpx.Timeout:
        return httpx.Timeout(None, connect=self.config.connect_timeout)

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.config.base_url,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            self._client.close()
            self._client = None

    def _post(self, path: str, payload: Optional[Dict[str, Any]] = None) -> httpx.Response:
        try:
            return self._get_client().post(path, json=payload or {})
        except httpx.HTTPError as exc:
            raise AgentRuntimeError(
                f"OpenCode request failed: {exc}",
                metadata={"path": path},
            ) from exc

    # Sessions
    def create_session(self, working_directory: str) -> str:
        """Open a session rooted at working_directory and return its id."""
        resp = self._post("/session", {"working_directory": working_directory})
        if not resp.is_success:
            raise AgentRuntimeError(
                f"OpenCode session creation failed with HTTP {resp.status_code}",
                metadata={"status_code": resp.status_code, "body": resp.text[:500]},
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise AgentRuntimeError("OpenCode session response was not JSON") from exc
        session_id = data.get("id") if isinstance(data, dict) else None
        if not session_id:
            raise AgentRuntimeError("OpenCode session response is missing an id")
        logger.info("opencode_session_created", extra={"session_id": session_id})
        return str(session_id)

    def prompt_async(self, session_id: str, prompt: str) -> None:
        resp = self._post(f"/session/{session_id}/prompt_async", {"prompt": prompt})
        if not resp.is_success:
            raise AgentRuntimeError(
                f"OpenCode prompt failed with HTTP {resp.status_code}",
                metadata={"session_id": session_id, "status_code": resp.status_code},
            )

    def abort_session(self, session_id: str) -> None:
        resp = self._post(f"/session/{session_id}/abort")
        if not resp.is_success:
            raise AgentRuntimeError(
                f"OpenCode abort failed with HTTP {resp.status_code}",
                metadata={"session_id": session_id, "status_code": resp.status_code},
            )
        logger.info("opencode_session_aborted", extra={"session_id": session_id})

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Fetch session info; None when the runtime no longer knows the session."""
        try:
            resp = self._get_client().get(f"/session/{session_id}")
        except httpx.HTTPError as exc:
            raise AgentRuntimeError(f"OpenCode request failed: {exc}") from exc
        if resp.status_code == 404:
            return None
        if not resp.is_success:
            raise AgentRuntimeError(
                f"OpenCode session lookup failed with HTTP {resp.status_code}",
                metadata={"session_id": session_id, "status_code": resp.status_code},
            )
        data = resp.json()
        return data if isinstance(data, dict) else {}

    # Event stream
    async def stream_events(self) -> AsyncIterator[Dict[str, Any]]:
        """
        Yield decoded `{type, properties}` messages from GET /event.

        Transport errors propagate to the caller, which owns reconnection.
        Malformed `data:` payloads are skipped.
        """
        async with httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=self.timeout,
            transport=self._async_transport,
        ) as client:
            async with client.stream("GET", "/event", headers={"Accept": "text/event-stream"}) as resp:
                resp.raise_for_status()
                data_lines = []
                async for line in resp.aiter_lines():
                    if line.startswith("data:"):
                        data_lines.append(line[5:].lstrip())
                        continue
                    if line.strip() or not data_lines:
                        continue
                    payload = "\n".join(data_lines)
                    data_lines = []
                    message = parse_event_payload(payload)
                    if message is not None:
                        yield message
                if data_lines:
                    message = parse_event_payload("\n".join(data_lines))
                    if message is not None:
                        yield message


def parse_event_payload(payload: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(payload)
    except ValueError:
        logger.debug("opencode_event_unparseable", extra={"payload": payload[:200]})
        return None
    if not isinstance(data, dict) or not data.get("type"):
        return None
    return data
