"""Structured field extraction from resume text with Gemini.

The extractor never raises: quota errors are retried with backoff, and any
failure that survives the retries yields a fallback record whose
``warning`` explains what went wrong.
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from google import genai
from google.genai import errors, types
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from resumedb.config import GeminiSettings, settings
from resumedb.pipelines.normalization import (
    clean_major,
    extract_latest_year,
    format_name,
    is_valid_year,
    title_case,
)

from .prompts import build_extraction_prompt
from .response_parser import parse_model_response

logger = logging.getLogger(__name__)

UNSPECIFIED = "Unspecified"
RETRYABLE_STATUS_CODES = frozenset({429, 503})
RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"


@dataclass
class ExtractedFields:
    """Normalized fields pulled from one resume."""
    name: str
    major: str
    graduation_year: str
    companies: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    warning: str | None = None

    @classmethod
    def fallback(cls, name: str = "", warning: str | None = None) -> "ExtractedFields":
        """Sentinel record used when extraction is impossible."""
        return cls(
            name=name,
            major=UNSPECIFIED,
            graduation_year=UNSPECIFIED,
            companies=[],
            keywords=[],
            warning=warning,
        )


def is_retryable_error(exc: BaseException) -> bool:
    """Rate-limit and service-unavailable responses are worth retrying."""
    return isinstance(exc, errors.APIError) and exc.code in RETRYABLE_STATUS_CODES


def _parse_duration(value: Any) -> float | None:
    # google.rpc durations are strings like "7s" or "1.5s"
    match = re.fullmatch(r"\s*(\d+(?:\.\d+)?)s?\s*", str(value))
    return float(match.group(1)) if match else None


def suggested_retry_delay(exc: BaseException) -> float | None:
    """Server-suggested delay (seconds) from a ``RetryInfo`` error detail, if any."""
    payload = getattr(exc, "details", None)
    if not isinstance(payload, dict):
        return None
    error = payload.get("error", payload)
    details = error.get("details") if isinstance(error, dict) else None
    if not isinstance(details, list):
        return None
    for detail in details:
        if isinstance(detail, dict) and detail.get("@type") == RETRY_INFO_TYPE and detail.get("retryDelay"):
            return _parse_duration(detail["retryDelay"])
    return None


class BackoffWithServerHint:
    """Tenacity wait strategy: exponential backoff, raised to the server hint when larger.

    Args:
        initial: Delay before the first retry, in seconds
        maximum: Cap for the exponential part
        hint_cap: Cap applied to server-suggested delays
    """

    def __init__(self, initial: float = 2.0, maximum: float = 10.0, hint_cap: float = 30.0):
        self.initial = initial
        self.maximum = maximum
        self.hint_cap = hint_cap

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = min(self.initial * 2 ** (retry_state.attempt_number - 1), self.maximum)
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        hint = suggested_retry_delay(exc) if exc is not None else None
        if hint:
            delay = max(delay, min(hint, self.hint_cap))
        return delay


class GeminiResumeExtractor:
    """Extracts name, major, graduation year, companies and keywords from resume text."""

    def __init__(
        self,
        config: GeminiSettings | None = None,
        *,
        client: genai.Client | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or settings.gemini
        if client is None and self.config.api_key:
            client = genai.Client(api_key=self.config.api_key)
        self._client = client
        self._sleep = sleep

    def _generation_config(self) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            temperature=self.config.temperature,
            top_p=self.config.top_p,
            top_k=self.config.top_k,
            max_output_tokens=self.config.max_output_tokens,
            response_mime_type="application/json",
        )

    def _log_retry(self, retry_state: RetryCallState) -> None:
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"Rate limit hit. Retrying in {wait:g}s... "
            f"(Retry {retry_state.attempt_number}/{self.config.max_retries})"
        )

    async def _generate(self, prompt: str) -> str:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries + 1),
            wait=BackoffWithServerHint(self.config.initial_delay, self.config.max_delay, self.config.max_hint_delay),
            retry=retry_if_exception(is_retryable_error),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await self._client.aio.models.generate_content(
                    model=self.config.model,
                    contents=prompt,
                    config=self._generation_config(),
                )
        return response.text or ""

    async def extract_fields(self, raw_text: str) -> ExtractedFields:
        """Run the model over ``raw_text`` and normalize what it returns.

        Args:
            raw_text: Plain text extracted from a resume PDF

        Returns:
            ExtractedFields; a fallback record with ``warning`` set on failure
        """
        if self._client is None:
            logger.warning("GEMINI_API_KEY not configured, skipping AI extraction")
            return ExtractedFields.fallback(warning="AI extraction unavailable: GEMINI_API_KEY is not configured.")

        text = raw_text[: self.config.max_input_chars]
        prompt = build_extraction_prompt(text)

        try:
            response_text = await self._generate(prompt)
        except errors.APIError as e:
            logger.error(f"Gemini API failed after retries: {e}")
            return ExtractedFields.fallback(warning=f"AI extraction failed: {e}")
        except Exception as e:
            logger.error(f"Error parsing resume with Gemini: {e}", exc_info=True)
            return ExtractedFields.fallback(warning=f"AI extraction failed: {e}")

        logger.debug(f"Raw Gemini response: {response_text}")
        return normalize_fields(parse_model_response(response_text))


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def normalize_fields(data: dict[str, Any]) -> ExtractedFields:
    """Apply field normalization to a raw model dictionary."""
    year = extract_latest_year(_as_text(data.get("graduationYear")))
    if not is_valid_year(year):
        year = ""

    companies = data.get("companies")
    keywords = data.get("keywords")
    return ExtractedFields(
        name=format_name(_as_text(data.get("name"))),
        major=clean_major(_as_text(data.get("major"))),
        graduation_year=year,
        companies=[title_case(_as_text(c)) for c in companies if _as_text(c)] if isinstance(companies, list) else [],
        keywords=[_as_text(k) for k in keywords if _as_text(k)] if isinstance(keywords, list) else [],
    )
