"""Structured call client: one logical model call with retry, timeout and telemetry.

A call resolves its tier through the fallback chain, sends one request per
attempt under ``asyncio.timeout`` and validates the response against the schema
registry before returning. Every failure mode (provider error, timeout, empty
content, non-JSON, schema violation) is retried with exponential backoff;
when attempts run out the last error is raised unchanged in kind.

Exactly one ``LLMCallRecord`` is emitted per successful call. Failed calls
emit none.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import dataclasses
import json
import logging
import time
from typing import Any

from pydantic import BaseModel

from screenplay_coverage.constants import (
    CALL_TIMEOUT,
    CHEAP_TIER_TEMPERATURE,
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_TEMPERATURE,
    MAX_RETRIES,
    RETRY_BASE_DELAY,
)
from screenplay_coverage.core.types import Tier
from screenplay_coverage.exceptions import ProviderCallError, SchemaViolationError
from screenplay_coverage.llm.providers import (
    CompletionProvider,
    CompletionRequest,
    CompletionResponse,
)
from screenplay_coverage.llm.tiers import ModelTierTable
from screenplay_coverage.schemas import json_schema, validate_items
from screenplay_coverage.telemetry import (
    LLMCallRecord,
    TelemetryCollector,
    TelemetryContext,
    TelemetryContextProtocol,
)

log = logging.getLogger(__name__)

type Sleep = Callable[[float], Awaitable[None]]

# --- Telemetry scopes ---
T_LLM_CALL = "llm.call"
T_LLM_RETRY = "llm.retry"


def serialize_content(user_content: Any) -> str:
    """Strings pass through; anything else is JSON-encoded."""
    if isinstance(user_content, str):
        return user_content
    return json.dumps(user_content, default=_to_jsonable, ensure_ascii=False)


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_none=True, by_alias=True)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {k: v for k, v in dataclasses.asdict(value).items() if v is not None}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class StructuredCallClient:
    """Issues single model calls on behalf of the escalation router."""

    def __init__(
        self,
        provider: CompletionProvider,
        tiers: ModelTierTable,
        telemetry: TelemetryCollector,
        *,
        timeout_s: float = CALL_TIMEOUT,
        base_delay: float = RETRY_BASE_DELAY,
        sleep: Sleep = asyncio.sleep,
        ctx: TelemetryContextProtocol | None = None,
    ) -> None:
        self._provider = provider
        self._tiers = tiers
        self._telemetry = telemetry
        self._timeout_s = timeout_s
        self._base_delay = base_delay
        self._sleep = sleep
        self._ctx: TelemetryContextProtocol = ctx or TelemetryContext()

    @property
    def tiers(self) -> ModelTierTable:
        return self._tiers

    @property
    def telemetry(self) -> TelemetryCollector:
        return self._telemetry

    async def call_structured(
        self,
        tier: Tier,
        system_prompt: str,
        user_content: Any,
        schema_name: str,
        schema: dict[str, Any] | None = None,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        temperature: float | None = None,
        retries: int = MAX_RETRIES,
        *,
        task: str | None = None,
        escalation_reason: str | None = None,
        confidence: float | None = None,
        check: Callable[[list[Any]], None] | None = None,
    ) -> list[Any]:
        """Call the model for JSON output and return validated items.

        `check` runs on the validated items and may raise
        ``SchemaViolationError`` for constraints that span items; such
        failures are retried like any other violation.

        Raises:
            ProviderCallError: Transient failures persisted through all retries.
            SchemaViolationError: The final attempt returned JSON that does not
                match ``schema_name``.
        """
        response_schema = schema if schema is not None else json_schema(schema_name)

        def parse(text: str | None) -> list[Any]:
            if not text or not text.strip():
                raise ProviderCallError("No content in response")
            try:
                payload = json.loads(text)
            except json.JSONDecodeError as e:
                raise ProviderCallError(f"Response is not valid JSON: {e}") from e
            items = validate_items(schema_name, payload)
            if check is not None:
                check(items)
            return items

        request = self._build_request(
            tier,
            system_prompt,
            user_content,
            max_output_tokens,
            temperature,
            schema_name=schema_name,
            response_schema=response_schema,
        )
        return await self._run(
            tier,
            request,
            parse,
            retries,
            task=task or schema_name,
            escalation_reason=escalation_reason,
            confidence=confidence,
        )

    async def call_text(
        self,
        tier: Tier,
        system_prompt: str,
        user_content: Any,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        temperature: float | None = None,
        retries: int = MAX_RETRIES,
        *,
        task: str | None = None,
    ) -> str:
        """Call the model for free-form prose. No schema is applied."""

        def parse(text: str | None) -> str:
            if not text or not text.strip():
                raise ProviderCallError("No content in response")
            return text.strip()

        request = self._build_request(
            tier, system_prompt, user_content, max_output_tokens, temperature
        )
        return await self._run(tier, request, parse, retries, task=task or "text")

    # --- Internal helpers ---

    def _build_request(
        self,
        tier: Tier,
        system_prompt: str,
        user_content: Any,
        max_output_tokens: int,
        temperature: float | None,
        *,
        schema_name: str | None = None,
        response_schema: dict[str, Any] | None = None,
    ) -> CompletionRequest:
        resolved = self._tiers.resolve(tier)
        if temperature is None:
            temperature = (
                CHEAP_TIER_TEMPERATURE if resolved.is_cheap else DEFAULT_TEMPERATURE
            )
        return CompletionRequest(
            model_id=self._tiers.model_id(resolved),
            system_prompt=system_prompt,
            user_content=serialize_content(user_content),
            max_output_tokens=self._tiers.clamp_output_tokens(
                resolved, max_output_tokens
            ),
            temperature=temperature,
            schema_name=schema_name,
            response_schema=response_schema,
        )

    async def _run[T](
        self,
        tier: Tier,
        request: CompletionRequest,
        parse: Callable[[str | None], T],
        retries: int,
        *,
        task: str,
        escalation_reason: str | None = None,
        confidence: float | None = None,
    ) -> T:
        if retries < 0:
            raise ValueError("retries must be >= 0")
        resolved = self._tiers.resolve(tier)
        attempts = retries + 1
        last_error: ProviderCallError | SchemaViolationError | None = None

        for attempt in range(attempts):
            start = time.perf_counter()
            try:
                with self._ctx(
                    T_LLM_CALL if attempt == 0 else T_LLM_RETRY,
                    tier=str(resolved),
                    task=task,
                    attempt=attempt + 1,
                ):
                    response = await self._complete(request)
                    result = parse(response.text)
            except (ProviderCallError, SchemaViolationError) as e:
                last_error = e
            else:
                latency_ms = (time.perf_counter() - start) * 1000
                self._telemetry.record_call(
                    LLMCallRecord(
                        tier=resolved,
                        tokens=response.total_tokens,
                        latency_ms=latency_ms,
                        model_id=response.model_id,
                        task=task,
                        escalation_reason=escalation_reason,
                        confidence=confidence,
                    )
                )
                return result

            log.warning(
                "LLM call attempt %d/%d failed (task=%s, tier=%s): %s",
                attempt + 1,
                attempts,
                task,
                resolved,
                last_error,
            )
            if attempt < retries:
                await self._sleep(self._base_delay * 2**attempt)

        assert last_error is not None
        raise last_error

    async def _complete(self, request: CompletionRequest) -> CompletionResponse:
        """Send one request, normalizing timeouts and SDK errors to ProviderCallError."""
        try:
            async with asyncio.timeout(self._timeout_s):
                return await self._provider.complete(request)
        except TimeoutError as e:
            raise ProviderCallError(
                f"{request.model_id} timed out after {self._timeout_s:.0f}s"
            ) from e
        except ProviderCallError:
            raise
        except Exception as e:
            raise ProviderCallError(f"{request.model_id} request failed: {e}") from e
