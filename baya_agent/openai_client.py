from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .config import Settings

logger = logging.getLogger("baya.openai")

REALTIME_MODALITIES = ["audio", "text"]


class OpenAIClientError(RuntimeError):
    """Any failure talking to the external model API."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class OpenAIClient:
    """Thin async wrapper around the chat-completion and realtime-session HTTP endpoints."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        """Purpose: Keep credential, endpoints, and model names for later calls.
        Inputs/Outputs: Input is Settings and an optional httpx transport; no return value.
        Side Effects / State: None; a client is opened per call.
        Dependencies: Uses httpx.AsyncClient.
        Failure Modes: None at init; a missing key surfaces as OpenAIClientError on use.
        If Removed: The model-delegated reply and the voice-session proxy stop working.
        Testing Notes: Inject httpx.MockTransport to assert payloads and simulate errors.
        """
        # A missing key is allowed here so /health can report it instead of crashing startup.
        self._settings = settings
        self._api_key = settings.openai_api_key
        self._base_url = settings.openai_base_url.rstrip("/")
        self._timeout = settings.openai_timeout_sec
        self._transport = transport

    @property
    def has_credential(self) -> bool:
        return bool(self._api_key)

    @property
    def model(self) -> str:
        return self._settings.openai_model

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
        )

    async def _post_json(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Purpose: POST a JSON payload and return the decoded JSON object.
        Inputs/Outputs: Inputs are a path relative to the base URL and the payload;
            output is the response body as a dict.
        Side Effects / State: One outbound HTTP request, no retry.
        Dependencies: Uses _client.
        Failure Modes: Missing key, transport errors, non-2xx status, and non-object
            JSON bodies all raise OpenAIClientError.
        If Removed: chat_completion and create_realtime_session lose their transport.
        Testing Notes: Return 500 or "not json" from a MockTransport and expect the error.
        """
        # Every failure mode is folded into OpenAIClientError for the callers.
        if not self._api_key:
            raise OpenAIClientError("OPENAI_API_KEY is required")
        try:
            async with self._client() as client:
                response = await client.post(path, json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            raise OpenAIClientError(
                f"{path} returned HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise OpenAIClientError(f"{path} request failed: {exc}") from exc
        except ValueError as exc:
            raise OpenAIClientError(f"{path} returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise OpenAIClientError(f"{path} returned an unexpected body")
        return data

    async def chat_completion(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 400,
    ) -> str:
        """Purpose: Generate one assistant reply from role-tagged chat messages.
        Inputs/Outputs: Input is a list of {role, content}; returns the reply text.
        Side Effects / State: One outbound request.
        Dependencies: Uses _post_json against /chat/completions.
        Failure Modes: Raises OpenAIClientError on any failure, including an empty choice.
        If Removed: The model-delegated composer has nothing to call.
        Testing Notes: A body with choices[0].message.content "Hi" returns "Hi".
        """
        # Take the first choice only.
        data = await self._post_json(
            "/chat/completions",
            {
                "model": model or self._settings.openai_model,
                "messages": messages,
                "temperature": temperature,
                "max_tokens": max_tokens,
            },
        )
        text = _first_choice_text(data)
        if not text:
            raise OpenAIClientError("/chat/completions returned no text")
        return text

    async def create_realtime_session(self, instructions: str = "") -> Dict[str, Any]:
        """Request an ephemeral realtime voice session and return its JSON verbatim."""
        payload: Dict[str, Any] = {
            "model": self._settings.openai_realtime_model,
            "voice": self._settings.openai_realtime_voice,
            "modalities": list(REALTIME_MODALITIES),
        }
        if instructions:
            payload["instructions"] = instructions
        return await self._post_json("/realtime/sessions", payload)

    async def probe(self) -> Tuple[bool, Optional[int]]:
        """Purpose: Check whether the external API answers at all.
        Inputs/Outputs: No inputs; returns (reachable, status_code).
        Side Effects / State: One GET /models request, no retry.
        Dependencies: Uses _client.
        Failure Modes: Never raises; transport errors give (False, None).
        If Removed: /health/openai cannot report reachability.
        Testing Notes: A 401 from the transport is reachable with status 401.
        """
        # Any HTTP answer, even 401, means the endpoint is reachable.
        try:
            async with self._client() as client:
                response = await client.get("/models")
        except httpx.HTTPError as exc:
            logger.warning("openai_probe_failed error=%s", exc)
            return False, None
        return True, response.status_code


def _first_choice_text(data: Dict[str, Any]) -> str:
    # Tolerate missing keys; the caller treats empty text as a failure.
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message") or {}
    content = message.get("content") if isinstance(message, dict) else None
    return str(content or "").strip()
