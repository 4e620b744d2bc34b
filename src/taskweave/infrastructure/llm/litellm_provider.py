"""
LiteLLM Provider

Model provider for all agents, backed by LiteLLM. Supports model aliases,
per-model default parameters, retry with exponential backoff and native
tool calling in both blocking and streaming mode.
"""

import asyncio
import os
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import litellm
import structlog

ALLOWED_PARAMS = (
    "temperature",
    "top_p",
    "max_tokens",
    "frequency_penalty",
    "presence_penalty",
    "tool_choice",
)


@dataclass
class RetryPolicy:
    """Retry policy configuration."""

    max_attempts: int = 3
    backoff_multiplier: float = 2.0
    timeout: int = 30
    retry_on_errors: list[str] = field(default_factory=list)

    @classmethod
    def from_config(cls, config: dict[str, Any] | None) -> "RetryPolicy":
        config = config or {}
        return cls(
            max_attempts=config.get("max_attempts", 3),
            backoff_multiplier=config.get("backoff_multiplier", 2.0),
            timeout=config.get("timeout", 30),
            retry_on_errors=config.get("retry_on_errors", []),
        )


def _usage_stats(usage: Any) -> dict[str, int]:
    # Handle both dict and object forms
    if isinstance(usage, dict):
        return usage
    return {
        "total_tokens": getattr(usage, "total_tokens", 0),
        "prompt_tokens": getattr(usage, "prompt_tokens", 0),
        "completion_tokens": getattr(usage, "completion_tokens", 0),
    }


class LiteLLMProvider:
    """
    Chat completions through LiteLLM with model-alias resolution.

    Config keys (all optional)::

        default_model: main
        models: {main: gpt-4o-mini, fast: gpt-4o-mini}
        model_params: {gpt-4o: {temperature: 0.2}}
        default_params: {max_tokens: 2000}
        retry: {max_attempts: 3, backoff_multiplier: 2.0, timeout: 30,
                retry_on_errors: [RateLimitError, Timeout]}
        api_key_env: OPENAI_API_KEY
    """

    supports_streaming = True

    def __init__(self, config: dict[str, Any] | None = None):
        config = config or {}
        self.logger = structlog.get_logger().bind(component="litellm_provider")
        self.default_model = config.get("default_model", "main")
        self.models: dict[str, str] = config.get("models", {})
        self.model_params: dict[str, dict] = config.get("model_params", {})
        self.default_params: dict[str, Any] = config.get("default_params", {})
        self.retry_policy = RetryPolicy.from_config(config.get("retry"))

        api_key_env = config.get("api_key_env", "OPENAI_API_KEY")
        if not os.getenv(api_key_env):
            self.logger.warning(
                "api_key_missing",
                env_var=api_key_env,
                hint="Set environment variable for API access",
            )

        self.logger.info(
            "llm_provider_initialized",
            default_model=self.default_model,
            model_aliases=list(self.models.keys()),
        )

    def _resolve_model(self, model_alias: str | None) -> str:
        """Resolve an alias to the provider model name; unknown names pass through."""
        if model_alias is None:
            model_alias = self.default_model
        return self.models.get(model_alias, model_alias)

    def _get_model_parameters(self, model: str) -> dict[str, Any]:
        if model in self.model_params:
            return self.model_params[model].copy()

        # Model family match, e.g. "gpt-4" matches "gpt-4-turbo"
        for model_key, params in self.model_params.items():
            if model.startswith(model_key):
                return params.copy()

        return self.default_params.copy()

    def _build_request(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        params: dict[str, Any],
    ) -> dict[str, Any]:
        actual_model = self._resolve_model(params.pop("model", None))
        merged = {**self._get_model_parameters(actual_model), **params}
        request = {k: v for k, v in merged.items() if k in ALLOWED_PARAMS and v is not None}
        if not tools:
            request.pop("tool_choice", None)
        else:
            request["tools"] = tools
        request.update(
            model=actual_model, messages=messages, timeout=self.retry_policy.timeout
        )
        return request

    def _should_retry(self, attempt: int, error: Exception) -> bool:
        error_type = type(error).__name__
        error_msg = str(error)
        return attempt < self.retry_policy.max_attempts - 1 and any(
            err_type in error_type or err_type in error_msg
            for err_type in self.retry_policy.retry_on_errors
        )

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        **params: Any,
    ) -> dict[str, Any]:
        """
        Perform a completion with retry logic.

        Returns:
            Dict with ``success``, ``content``, ``tool_calls``, ``usage``,
            ``model`` and ``latency_ms``; ``error`` and ``error_type`` if the
            call failed.
        """
        request = self._build_request(messages, tools, dict(params))
        actual_model = request["model"]

        for attempt in range(self.retry_policy.max_attempts):
            try:
                start_time = time.time()
                self.logger.info(
                    "llm_completion_started",
                    model=actual_model,
                    attempt=attempt + 1,
                    message_count=len(messages),
                    tools=len(tools or []),
                )

                response = await litellm.acompletion(**request)
                message = response.choices[0].message

                tool_calls = [
                    {
                        "id": tc.id,
                        "name": tc.function.name,
                        "arguments": tc.function.arguments,
                    }
                    for tc in getattr(message, "tool_calls", None) or []
                ]
                token_stats = _usage_stats(getattr(response, "usage", {}))
                latency_ms = int((time.time() - start_time) * 1000)

                self.logger.info(
                    "llm_completion_success",
                    model=actual_model,
                    tokens=token_stats.get("total_tokens", 0),
                    tool_calls=len(tool_calls),
                    latency_ms=latency_ms,
                )
                return {
                    "success": True,
                    "content": message.content,
                    "tool_calls": tool_calls,
                    "usage": token_stats,
                    "model": actual_model,
                    "latency_ms": latency_ms,
                }

            except Exception as e:
                if self._should_retry(attempt, e):
                    backoff_time = self.retry_policy.backoff_multiplier**attempt
                    self.logger.warning(
                        "llm_completion_retry",
                        model=actual_model,
                        error_type=type(e).__name__,
                        attempt=attempt + 1,
                        backoff_seconds=backoff_time,
                    )
                    await asyncio.sleep(backoff_time)
                    continue

                self.logger.error(
                    "llm_completion_failed",
                    model=actual_model,
                    error_type=type(e).__name__,
                    error=str(e)[:200],
                    attempts=attempt + 1,
                )
                return {
                    "success": False,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "model": actual_model,
                }

        return {
            "success": False,
            "error": "Max retries exceeded",
            "model": actual_model,
        }

    async def complete_stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        **params: Any,
    ) -> AsyncIterator[dict[str, Any]]:
        """
        Stream a completion as ``token`` and ``tool_call_*`` chunks.

        Failures are yielded as a single ``error`` chunk. Streams are not
        retried once the first chunk has been received.
        """
        request = self._build_request(messages, tools, dict(params))
        actual_model = request["model"]
        self.logger.info(
            "llm_stream_started", model=actual_model, message_count=len(messages)
        )

        started: dict[int, dict[str, str]] = {}
        try:
            response = await litellm.acompletion(stream=True, **request)
            async for chunk in response:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta

                if getattr(delta, "content", None):
                    yield {"type": "token", "content": delta.content}

                for tc in getattr(delta, "tool_calls", None) or []:
                    index = tc.index or 0
                    function = tc.function
                    if index not in started:
                        started[index] = {"id": tc.id or "", "arguments": ""}
                        yield {
                            "type": "tool_call_start",
                            "index": index,
                            "id": tc.id or "",
                            "name": (function.name if function else "") or "",
                        }
                    arguments = (function.arguments if function else "") or ""
                    if arguments:
                        started[index]["arguments"] += arguments
                        yield {
                            "type": "tool_call_delta",
                            "index": index,
                            "arguments_delta": arguments,
                        }

            for index, call in started.items():
                yield {
                    "type": "tool_call_end",
                    "index": index,
                    "id": call["id"],
                    "arguments": call["arguments"],
                }
            self.logger.info("llm_stream_finished", model=actual_model, tool_calls=len(started))

        except Exception as e:
            self.logger.error(
                "llm_stream_failed",
                model=actual_model,
                error_type=type(e).__name__,
                error=str(e)[:200],
            )
            yield {"type": "error", "message": str(e)}
