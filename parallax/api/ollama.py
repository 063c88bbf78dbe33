"""
Generation Client — the HTTP interface to an Ollama-compatible server.

Every worker in the pool owns one of these. It knows how to:
- issue a prompt and wait for the whole answer (buffered mode)
- issue a prompt and hand back text fragments as they arrive (streaming mode)
- list installed models and pick a sensible one when none is configured
- answer a cheap liveness probe without invoking a model

The client performs no retries. Callers that want another attempt call again.
"""

from __future__ import annotations

import inspect
import time
from typing import Any, AsyncIterator, Callable, Optional

import httpx
import structlog
from pydantic import BaseModel

from parallax.api.streaming import NdjsonStreamDecoder
from parallax.config import OllamaConfig
from parallax.metrics import metrics

logger = structlog.get_logger(__name__)

GENERATE_PATH = "/api/generate"
TAGS_PATH = "/api/tags"

# Most capable coder models first, small generic models last.
MODEL_PREFERENCE_ORDER: tuple[str, ...] = (
    "qwen2.5-coder:32b", "qwen2.5-coder:14b", "qwen2.5-coder:7b", "qwen2.5-coder:3b",
    "codellama:34b", "codellama:13b", "codellama:7b", "codellama:7b-code",
    "deepseek-coder:33b", "deepseek-coder:6.7b", "deepseek-coder:1.3b",
    "llama3.1:70b", "llama3.1:8b", "llama3.2:3b", "llama3.2:1b",
    "gemma2:27b", "gemma2:9b", "gemma2:2b", "mistral:7b", "phi3:14b", "phi3:mini",
)

PULL_SUGGESTIONS = (
    "ollama pull qwen2.5-coder:7b (code specialist)",
    "ollama pull llama3.2:3b (light and fast)",
    "ollama pull phi3:mini (very light)",
)


class GenerationError(RuntimeError):
    """Base class for generation client failures."""


class GenerationConnectionError(GenerationError):
    """The generation server could not be reached."""


class ModelNotFoundError(GenerationError):
    """The requested model is not installed (HTTP 404), or none is installed."""


class ProtocolError(GenerationError):
    """The server answered with a non-success status or an unusable body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UnexpectedGenerationError(GenerationError):
    """Any other failure, timeouts included."""


class ModelInfo(BaseModel):
    """One entry of the server's installed-model list."""

    name: str
    modified_at: str = ""
    size: int = 0

    model_config = {"extra": "ignore"}


TokenCallback = Callable[[str], Any]
CompleteCallback = Callable[[str], Any]


def select_preferred_model(models: list[ModelInfo]) -> str:
    """Pick a model by walking MODEL_PREFERENCE_ORDER.

    A model matches a preferred entry when its name is identical or when it
    starts with the entry's family (the part before ``:``). Falls back to the
    first installed model.
    """
    if not models:
        raise ModelNotFoundError(
            "No models installed on the server. Suggestions:\n- "
            + "\n- ".join(PULL_SUGGESTIONS)
        )
    for preferred in MODEL_PREFERENCE_ORDER:
        family = preferred.split(":", 1)[0]
        for model in models:
            if model.name == preferred or model.name.startswith(family):
                return model.name
    return models[0].name


def build_chat_prompt(
    message: str,
    history: Optional[list[dict[str, str]]] = None,
    window: int = 10,
) -> str:
    """Render a conversation as a plain completion prompt.

    ``history`` ends with the current message, so only the turns before it
    (within the last ``window`` entries) are rendered.
    """
    conversation = ""
    if history and len(history) > 1:
        recent = history[-window:][:-1]
        conversation = "\n\n".join(
            f"{'User' if msg.get('role') == 'user' else 'Assistant'}: {msg.get('content', '')}"
            for msg in recent
        )
        if conversation:
            conversation += "\n\n"
    return f"{conversation}User: {message}\nAssistant:"


def _translate_http_error(exc: Exception, model: str, server_url: str) -> GenerationError:
    if isinstance(exc, GenerationError):
        return exc
    if isinstance(exc, httpx.ConnectError):
        return GenerationConnectionError(f"Cannot connect to the generation server at {server_url}")
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 404:
            return ModelNotFoundError(f"Model '{model}' not found")
        return ProtocolError(f"Generation server returned HTTP {status}", status_code=status)
    if isinstance(exc, httpx.TimeoutException):
        return UnexpectedGenerationError(f"Generation request timed out: {exc}")
    return UnexpectedGenerationError(f"Unexpected generation failure: {exc}")


async def _invoke(callback: Optional[Callable[..., Any]], *args: Any) -> None:
    if callback is None:
        return
    maybe_awaitable = callback(*args)
    if inspect.isawaitable(maybe_awaitable):
        await maybe_awaitable


class OllamaClient:
    """
    Async client for the ``/api/generate`` and ``/api/tags`` endpoints.

    The resolved model name is cached per client after the first lookup, so a
    worker pays for model discovery once.
    """

    def __init__(
        self,
        config: OllamaConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._config = config
        self._client = httpx.AsyncClient(
            base_url=config.server_url,
            transport=transport,
            timeout=config.chat_timeout,
        )
        self._resolved_model: Optional[str] = None

        self._total_calls = 0
        self._total_errors = 0
        self._last_call_time: Optional[float] = None

    @property
    def config(self) -> OllamaConfig:
        return self._config

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "OllamaClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # -------------------------------------------------------------------------
    # Model discovery
    # -------------------------------------------------------------------------

    async def list_models(self) -> list[ModelInfo]:
        """Return the models installed on the server."""
        try:
            response = await self._client.get(TAGS_PATH, timeout=self._config.models_timeout)
            response.raise_for_status()
            payload = response.json()
        except Exception as exc:
            raise _translate_http_error(exc, "", self._config.server_url) from exc
        models = payload.get("models") if isinstance(payload, dict) else None
        return [ModelInfo.model_validate(m) for m in models or [] if isinstance(m, dict)]

    async def test_connection(self) -> bool:
        """Liveness probe: can the model list endpoint be reached?"""
        try:
            response = await self._client.get(TAGS_PATH, timeout=self._config.probe_timeout)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.debug("ollama.probe_failed", server_url=self._config.server_url, error=str(exc))
            return False
        return True

    async def auto_select_model(self, models: Optional[list[ModelInfo]] = None) -> str:
        """Choose a model from what is installed."""
        if models is None:
            models = await self.list_models()
        name = select_preferred_model(models)
        logger.info("ollama.model_auto_selected", model=name, installed=len(models))
        return name

    async def resolve_model(self) -> str:
        """Return the model to use for requests.

        An empty configured name, or a configured model that is not installed,
        falls back to auto-selection. If the model list cannot be fetched the
        configured name is used as-is.
        """
        if self._resolved_model:
            return self._resolved_model

        configured = self._config.model
        if not configured:
            self._resolved_model = await self.auto_select_model()
            return self._resolved_model

        try:
            models = await self.list_models()
        except GenerationError as exc:
            logger.warning(
                "ollama.model_check_failed",
                model=configured,
                error=str(exc),
            )
            return configured

        if any(m.name == configured for m in models):
            self._resolved_model = configured
        else:
            logger.warning("ollama.configured_model_missing", model=configured)
            self._resolved_model = await self.auto_select_model(models)
        return self._resolved_model

    async def _alternative_model(self, failed_model: str) -> Optional[str]:
        self._resolved_model = None
        try:
            alternative = await self.auto_select_model()
        except GenerationError as exc:
            logger.warning("ollama.alternative_model_failed", model=failed_model, error=str(exc))
            return None
        if alternative == failed_model:
            return None
        self._resolved_model = alternative
        return alternative

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    def _payload(
        self,
        model: str,
        prompt: str,
        stream: bool,
        system: Optional[str],
        options: Optional[dict[str, Any]],
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "prompt": prompt,
            "stream": stream,
            "options": self._config.request_options(options),
        }
        if system:
            payload["system"] = system
        return payload

    async def _generate_once(
        self,
        model: str,
        prompt: str,
        system: Optional[str],
        options: Optional[dict[str, Any]],
        timeout: float,
    ) -> str:
        start_time = time.monotonic()
        self._total_calls += 1
        metrics.inc("generation.calls")
        try:
            response = await self._client.post(
                GENERATE_PATH,
                json=self._payload(model, prompt, False, system, options),
                timeout=timeout,
            )
            response.raise_for_status()
            data = response.json()
        except Exception as exc:
            self._total_errors += 1
            metrics.inc("generation.errors")
            error = _translate_http_error(exc, model, self._config.server_url)
            logger.error(
                "ollama.generate_failed",
                model=model,
                error_type=type(error).__name__,
                error=str(error),
            )
            raise error from exc

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str) or not text:
            self._total_errors += 1
            metrics.inc("generation.errors")
            raise ProtocolError("Invalid response body from generation server")

        elapsed = time.monotonic() - start_time
        self._last_call_time = elapsed
        metrics.observe("generation.latency_seconds", elapsed)
        logger.debug(
            "ollama.generate_complete",
            model=model,
            elapsed_seconds=round(elapsed, 2),
            chars=len(text),
        )
        return text.strip()

    async def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        options: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Buffered generation: one request, the whole trimmed answer.

        On a 404 for the resolved model, auto-selection is attempted once and
        the request repeated with the alternative before giving up.
        """
        timeout = timeout if timeout is not None else self._config.chat_timeout
        model = await self.resolve_model()
        try:
            return await self._generate_once(model, prompt, system, options, timeout)
        except ModelNotFoundError:
            alternative = await self._alternative_model(model)
            if alternative is None:
                raise
            logger.warning("ollama.model_fallback", failed=model, alternative=alternative)
            return await self._generate_once(alternative, prompt, system, options, timeout)

    async def generate_stream(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        options: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> AsyncIterator[str]:
        """Streaming generation: yields text fragments as they arrive.

        The iterator ending normally is the completion signal. A stream that
        ends with neither a ``done`` marker nor any text raises ProtocolError.
        """
        timeout = timeout if timeout is not None else self._config.chat_timeout
        model = await self.resolve_model()
        decoder = NdjsonStreamDecoder()
        self._total_calls += 1
        metrics.inc("generation.calls")
        start_time = time.monotonic()

        try:
            async with self._client.stream(
                "POST",
                GENERATE_PATH,
                json=self._payload(model, prompt, True, system, options),
                timeout=timeout,
            ) as response:
                response.raise_for_status()
                async for chunk in response.aiter_bytes():
                    for event in decoder.feed(chunk):
                        if event.fragment:
                            yield event.fragment
        except Exception as exc:
            self._total_errors += 1
            metrics.inc("generation.errors")
            error = _translate_http_error(exc, model, self._config.server_url)
            logger.error("ollama.stream_failed", model=model, error=str(error))
            raise error from exc

        for event in decoder.finish():
            if event.fragment:
                yield event.fragment

        if decoder.completion_text() is None:
            raise ProtocolError("Stream ended without content or completion marker")

        elapsed = time.monotonic() - start_time
        self._last_call_time = elapsed
        metrics.observe("generation.latency_seconds", elapsed)
        logger.debug(
            "ollama.stream_complete",
            model=model,
            elapsed_seconds=round(elapsed, 2),
            saw_done=decoder.done,
            malformed_lines=decoder.malformed_lines,
        )

    async def stream_completion(
        self,
        prompt: str,
        on_token: Optional[TokenCallback] = None,
        on_complete: Optional[CompleteCallback] = None,
        *,
        system: Optional[str] = None,
        options: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Callback form of :meth:`generate_stream`.

        ``on_token`` receives every fragment; ``on_complete`` receives the
        trimmed full text exactly once. Callbacks may be sync or async.
        """
        parts: list[str] = []
        async for fragment in self.generate_stream(
            prompt, system=system, options=options, timeout=timeout
        ):
            parts.append(fragment)
            await _invoke(on_token, fragment)
        full_text = "".join(parts).strip()
        await _invoke(on_complete, full_text)
        return full_text

    # -------------------------------------------------------------------------
    # Single-shot chat helpers
    # -------------------------------------------------------------------------

    def _chat_options(self) -> dict[str, Any]:
        return {
            "temperature": self._config.chat_temperature,
            "num_predict": self._config.chat_num_predict,
        }

    async def chat(self, message: str, history: Optional[list[dict[str, str]]] = None) -> str:
        """Buffered chat turn with optional conversation history."""
        prompt = build_chat_prompt(message, history, self._config.history_window)
        return await self.generate(prompt, options=self._chat_options())

    async def chat_stream(
        self,
        message: str,
        history: Optional[list[dict[str, str]]] = None,
        on_token: Optional[TokenCallback] = None,
        on_complete: Optional[CompleteCallback] = None,
    ) -> str:
        """Streamed chat turn; see :meth:`stream_completion`."""
        prompt = build_chat_prompt(message, history, self._config.history_window)
        return await self.stream_completion(
            prompt,
            on_token=on_token,
            on_complete=on_complete,
            options=self._chat_options(),
        )

    @property
    def telemetry(self) -> dict[str, Any]:
        """Return current call counters for this client."""
        return {
            "model": self._resolved_model,
            "total_calls": self._total_calls,
            "total_errors": self._total_errors,
            "last_call_seconds": self._last_call_time if self._last_call_time is not None else 0.0,
        }
