"""Generation client backed by a local Ollama server.

Every stage agent calls ``generate(model, prompt, system)``. The client keeps
no per-run state so one instance can be shared across concurrent runs.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from .prompts import MOCK_RESPONSES, role_for_system

logger = logging.getLogger(__name__)

# Default Ollama endpoint
OLLAMA_BASE_URL = "http://localhost:11434"

DEFAULT_TIMEOUT = 300


class GenerationError(Exception):
    """Raised when the backend cannot produce text."""

    pass


class OllamaClient:
    """Client for the Ollama generate API."""

    def __init__(
        self,
        base_url: str = OLLAMA_BASE_URL,
        timeout: int = DEFAULT_TIMEOUT,
        temperature: Optional[float] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Ollama API base URL.
            timeout: Request timeout in seconds.
            temperature: Optional sampling temperature passed to every call.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.temperature = temperature

    def generate(self, model: str, prompt: str, system: str = "") -> str:
        """Generate a completion.

        Args:
            model: Name of the Ollama model.
            prompt: The user prompt.
            system: System instruction for the model.

        Returns:
            The generated text.

        Raises:
            GenerationError: On HTTP failure, timeout or an empty response.
        """
        payload: dict = {
            "model": model,
            "prompt": prompt,
            "system": system,
            "stream": False,
        }
        if self.temperature is not None:
            payload["options"] = {"temperature": self.temperature}

        logger.debug(f"Generating with model={model}, prompt={len(prompt)} chars")

        try:
            response = httpx.post(
                f"{self.base_url}/api/generate",
                json=payload,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise GenerationError(
                f"Ollama request timed out after {self.timeout}s"
            ) from exc
        except httpx.ConnectError as exc:
            raise GenerationError(
                f"Cannot connect to Ollama at {self.base_url}: {exc}"
            ) from exc
        except httpx.HTTPError as exc:
            raise GenerationError(f"Ollama request failed: {exc}") from exc

        if response.status_code != 200:
            raise GenerationError(
                f"Ollama returned status {response.status_code}: {response.text[:500]}"
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise GenerationError(f"Invalid JSON from Ollama: {exc}") from exc

        text = data.get("response", "")
        if not isinstance(text, str) or not text.strip():
            raise GenerationError(f"Model '{model}' returned an empty response")

        logger.debug(f"Ollama usage: {data.get('eval_count', 0)} output tokens")
        return text

    def list_models(self) -> list[dict]:
        """List models installed on the Ollama server.

        Raises:
            GenerationError: If the server cannot be reached.
        """
        try:
            response = httpx.get(f"{self.base_url}/api/tags", timeout=10)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise GenerationError(f"Failed to fetch models from Ollama: {exc}") from exc

        models = response.json().get("models", [])
        return [
            {
                "name": m.get("name", ""),
                "size": m.get("size", 0),
                "modified_at": m.get("modified_at", ""),
            }
            for m in models
        ]


class MockGenerationClient:
    """Mock generation client for testing and ``--mock`` runs.

    Responses are looked up by stage role. The role is recovered from the
    system instruction, so stage agents need no special handling.
    """

    def __init__(self, responses: Optional[dict[str, str]] = None):
        self.responses = dict(MOCK_RESPONSES)
        if responses:
            self.responses.update(responses)
        self.calls: list[dict] = []
        self.fail_roles: set[str] = set()
        self.fail_error: str = "Mock generation failure"

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def generate(self, model: str, prompt: str, system: str = "") -> str:
        role = role_for_system(system)
        self.calls.append({"model": model, "prompt": prompt, "system": system, "role": role})

        if role in self.fail_roles:
            raise GenerationError(self.fail_error)
        if role not in self.responses:
            raise GenerationError(f"No mock response for role {role!r}")
        return self.responses[role]

    def roles_called(self) -> list[Optional[str]]:
        return [call["role"] for call in self.calls]

    def list_models(self) -> list[dict]:
        return [{"name": "mock-model", "size": 0, "modified_at": ""}]
