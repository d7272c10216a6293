"""
Resilient generation client.

Wraps a single schema-bound call to a :class:`~portalpilot.agent.backends.GenerationBackend`:

* quota / rate-limit failures are retried with exponential backoff, up to
  :attr:`RetryPolicy.max_attempts` calls in total;
* every other backend failure ends the call on first occurrence;
* a response that does not parse and validate against the mode's schema is a failure of its own
  kind (``invalid_output``), never silently coerced.

Callers only ever see :class:`~portalpilot.core.schema.GenerationOk` or
:class:`~portalpilot.core.schema.FatalFailure`; retries stay inside
:meth:`GenerationClient.generate`.
"""

import asyncio
import logging
import re
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Awaitable,
    Callable,
    Sequence,
)

from pydantic import ValidationError

from portalpilot.agent.backends import (
    BackendConfig,
    GenerationBackend,
    load_backend,
)
from portalpilot.config import Settings
from portalpilot.core.output_schemas import OutputSchema
from portalpilot.core.schema import (
    FailureKind,
    FatalFailure,
    GenerationOk,
    GenerationOutcome,
    PromptRequest,
    RetryableFailure,
    ToolDeclaration,
)

logger = logging.getLogger(__name__)

_QUOTA_PATTERN = re.compile(r"\b429\b|quota|exhausted|too many requests|rate limit")


def is_quota_error(error: BaseException) -> bool:
    """True when *error* signals a request-rate or usage quota being hit."""
    if getattr(error, "status_code", None) == 429:
        return True
    return _QUOTA_PATTERN.search(f"{type(error).__name__} {error}".lower()) is not None


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to call the backend and how long to wait in between."""

    max_attempts: int = 6
    base_delay: float = 2.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    is_retryable: Callable[[BaseException], bool] = field(default=is_quota_error)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay <= 0 or self.multiplier <= 1:
            raise ValueError("backoff needs a positive base delay and a multiplier above 1")
        # Every retry must wait strictly longer than the one before, so the cap may not bind.
        longest = self.base_delay * self.multiplier ** max(self.max_attempts - 2, 0)
        if self.max_delay < longest:
            raise ValueError(
                f"max_delay {self.max_delay}s is below the last backoff delay {longest}s"
            )

    def delay_before(self, attempt: int) -> float:
        """Seconds to wait before 1-indexed *attempt*; the first attempt is immediate."""
        if attempt <= 1:
            return 0.0
        return min(self.base_delay * self.multiplier ** (attempt - 2), self.max_delay)


def _sanitize_json_string(content: str) -> str:
    """Strip a markdown code fence some models wrap around JSON output."""
    if "```" in content:
        match = re.search(r"```(?:json)?\s*(.+?)```", content, re.DOTALL)
        if match:
            return match.group(1).strip()
    return content.strip()


def build_prompt(request: PromptRequest) -> str:
    """Render *request* as the text sent to the backend."""
    if request.context_tag:
        return f"{request.text}\n\nCONTEXT: {request.context_tag}"
    return request.text


class GenerationClient:
    """Schema-constrained generation with quota-aware retry.

    Holds no conversation state; one instance can serve any number of sessions.
    """

    def __init__(
        self,
        backend: GenerationBackend,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.backend = backend
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def generate(
        self,
        request: PromptRequest,
        schema: OutputSchema,
        tools: Sequence[ToolDeclaration] = (),
    ) -> GenerationOk | FatalFailure:
        """
        Call the backend for *request* with *schema* attached.

        Parameters
        ----------
        request:
            The prompt and its mode.
        schema:
            Output schema bound to ``request.mode``.
        tools:
            Tools the model may ask for; ignored by modes that do not accept tools.

        Returns
        -------
        GenerationOk | FatalFailure
            The validated value, or a terminal failure with a displayable reason.
        """
        if schema.mode is not request.mode:
            raise ValueError(
                f"Schema for mode '{schema.mode.value}' does not match request mode "
                f"'{request.mode.value}'."
            )

        prompt = build_prompt(request)
        response_schema = schema.response_schema(tools)
        logger.debug("Generation prompt [%s]:\n%s", request.mode.value, prompt)

        attempt = 1
        while True:
            outcome = await self._attempt(prompt, schema, response_schema, tools, attempt)
            if not isinstance(outcome, RetryableFailure):
                return outcome

            if attempt >= self.policy.max_attempts:
                logger.error(
                    "Quota still exhausted after %d attempts: %s", attempt, outcome.reason
                )
                return FatalFailure(
                    reason=f"AI generation failed: quota exhausted after {attempt} attempts.",
                    kind=FailureKind.QUOTA_EXHAUSTED,
                    attempts=attempt,
                )

            attempt += 1
            delay = self.policy.delay_before(attempt)
            logger.warning(
                "Quota hit, retry #%d of %d in %.1fs: %s",
                attempt - 1,
                self.policy.max_attempts - 1,
                delay,
                outcome.reason,
            )
            await self._sleep(delay)

    async def _attempt(
        self,
        prompt: str,
        schema: OutputSchema,
        response_schema: dict,
        tools: Sequence[ToolDeclaration],
        attempt: int,
    ) -> GenerationOutcome:
        try:
            content = await self.backend.generate(
                prompt,
                system_instruction=schema.instruction,
                response_schema=response_schema,
                tools=tools if schema.accepts_tools else (),
            )
        except Exception as exc:  # pylint: disable=broad-except
            if self.policy.is_retryable(exc):
                return RetryableFailure(reason=str(exc), attempt=attempt)
            logger.error("Generation failed on attempt %d: %s", attempt, exc)
            return FatalFailure(
                reason=f"AI generation failed: {exc}",
                kind=FailureKind.BACKEND_ERROR,
                attempts=attempt,
            )

        try:
            value = schema.validate(_sanitize_json_string(content))
        except ValidationError as exc:
            logger.error(
                "Backend output does not match the %s schema: %s", schema.mode.value, exc
            )
            return FatalFailure(
                reason="AI returned invalid output.",
                kind=FailureKind.INVALID_OUTPUT,
                attempts=attempt,
                raw_text=content,
            )

        return GenerationOk(value=value, attempts=attempt)


def build_generation_client(settings: Settings) -> GenerationClient:
    """Assemble a client from *settings*; the only place settings reach the generation path."""
    if settings.BACKEND.lower() == "openai":
        config = BackendConfig(
            api_key=settings.OPENAI_API_KEY,
            model=settings.OPENAI_MODEL,
            timeout=settings.GENERATION_TIMEOUT,
        )
    else:
        config = BackendConfig(
            api_key=settings.GEMINI_API_KEY,
            model=settings.GEMINI_MODEL,
            base_url=settings.GEMINI_BASE_URL,
            timeout=settings.GENERATION_TIMEOUT,
        )
    config = config.model_copy(
        update={
            "temperature": settings.GENERATION_TEMPERATURE,
            "top_p": settings.GENERATION_TOP_P,
            "top_k": settings.GENERATION_TOP_K,
            "max_output_tokens": settings.GENERATION_MAX_OUTPUT_TOKENS,
        }
    )
    policy = RetryPolicy(
        max_attempts=settings.GENERATION_MAX_ATTEMPTS,
        base_delay=settings.GENERATION_BACKOFF_BASE,
        multiplier=settings.GENERATION_BACKOFF_MULTIPLIER,
        max_delay=settings.GENERATION_BACKOFF_MAX,
    )
    return GenerationClient(load_backend(settings.BACKEND, config), policy)
