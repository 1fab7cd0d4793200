"""Gemini extraction of tech pack attributes, run one style at a time with backoff."""

import json
import logging
import os
import time
from collections.abc import Callable
from typing import Any, Protocol

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from src.schemas.job import FieldExtraction
from src.services.fields import build_extraction_prompt, tech_pack_field_names
from src.services.types import DownloadResult, ExtractionResult

logger = logging.getLogger(__name__)

_PARSE_RETRY_DELAY_SECONDS = 3.0
_RATE_LIMIT_BASE_DELAY_SECONDS = 30.0
_RATE_LIMIT_MARKERS = ("429", "rate_limit", "RESOURCE_EXHAUSTED")


class RateLimitError(Exception):
    """Raised when the extraction model service rejects a call for exceeding its quota."""


class ExtractionParseError(ValueError):
    """Raised when a model response does not contain a usable JSON object."""


class ExtractionClient(Protocol):
    def generate(self, pdf_bytes: bytes, prompt: str) -> str: ...


class GeminiExtractionClient:
    """Sends a tech pack PDF plus the extraction prompt to Gemini and returns the raw text."""

    def __init__(self, api_key: str | None = None, model_name: str | None = None) -> None:
        api_key = (api_key or os.environ.get("GEMINI_API_KEY", "")).strip()
        model_name = (model_name or os.environ.get("GEMINI_PDF_MODEL", "")).strip()
        if not api_key:
            raise ValueError("GEMINI_API_KEY environment variable is not set")
        if not model_name:
            raise ValueError("GEMINI_PDF_MODEL environment variable is not set")
        self._client = genai.Client(api_key=api_key)
        self._model_name = model_name

    def generate(self, pdf_bytes: bytes, prompt: str) -> str:
        try:
            response = self._client.models.generate_content(
                model=self._model_name,
                contents=[
                    genai_types.Part.from_bytes(data=pdf_bytes, mime_type="application/pdf"),
                    prompt,
                ],
            )
        except genai_errors.APIError as exc:
            if exc.code == 429 or _looks_rate_limited(str(exc)):
                raise RateLimitError(str(exc)) from exc
            raise
        text = response.text or ""
        logger.info("Gemini response received (%d chars)", len(text))
        return text


def _looks_rate_limited(message: str) -> bool:
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


def extract_json_object(raw_text: str) -> dict[str, Any]:
    """Parse the JSON object in *raw_text*, ignoring code fences and surrounding prose."""
    cleaned = raw_text.replace("```json", "").replace("```", "").strip()
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end > start:
        cleaned = cleaned[start : end + 1]
    try:
        data: object = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ExtractionParseError(f"invalid JSON in model response: {exc}") from exc
    if not isinstance(data, dict):
        raise ExtractionParseError("model response is not a JSON object")
    return data


def normalize_bundle(data: dict[str, Any]) -> dict[str, dict[str, object]]:
    """Map each tech pack field to ``{value, rationale, needs_review}``.

    Fields the model omitted are stored empty. A bare string answer is taken
    as the value; the model's ``logic`` key is read as the rationale.
    """
    bundle: dict[str, dict[str, object]] = {}
    for name in tech_pack_field_names():
        raw = data.get(name)
        if isinstance(raw, dict):
            field = FieldExtraction(
                value=raw.get("value"),
                rationale=raw.get("rationale", raw.get("logic")),
                needs_review=raw.get("needs_review", False),
            )
        else:
            field = FieldExtraction(value=raw)
        bundle[name] = field.model_dump()
    return bundle


class ExtractionStage:
    """Extracts attributes for each downloaded tech pack, strictly one call at a time.

    The model service enforces a request rate, so a fixed delay separates
    consecutive calls whatever their outcome. Unparseable responses are retried
    after a short pause; rate-limit rejections are retried with exponential
    backoff (60s, 120s, 240s with the defaults). Exhausting either budget fails
    the style, never the job.
    """

    def __init__(
        self,
        client: ExtractionClient,
        read_pdf: Callable[[str], bytes],
        delay_seconds: float = 5.0,
        max_retries: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._read_pdf = read_pdf
        self._delay_seconds = delay_seconds
        self._max_retries = max_retries
        self._sleep = sleep
        self._prompt = build_extraction_prompt()

    def run(
        self,
        downloads: list[DownloadResult],
        on_item_done: Callable[[ExtractionResult], None],
    ) -> list[ExtractionResult]:
        results: list[ExtractionResult] = []
        for i, download in enumerate(downloads):
            if i > 0:
                self._sleep(self._delay_seconds)
            result = self.extract_one(download["style_no"])
            results.append(result)
            on_item_done(result)
        return results

    def extract_one(self, style_no: str) -> ExtractionResult:
        try:
            pdf_bytes = self._read_pdf(style_no)
        except OSError as exc:
            logger.error("cannot read tech pack for %s: %s", style_no, exc)
            return ExtractionResult(style_no=style_no, success=False, error=str(exc))

        parse_failures = 0
        rate_limit_hits = 0
        while True:
            attempt = parse_failures + rate_limit_hits
            logger.info("extracting: %s%s", style_no, f" (retry {attempt})" if attempt else "")
            try:
                text = self._client.generate(pdf_bytes, self._prompt)
                data = extract_json_object(text)
            except ExtractionParseError as exc:
                if parse_failures >= self._max_retries:
                    logger.error("extraction failed for %s: %s", style_no, exc)
                    return ExtractionResult(style_no=style_no, success=False, error=str(exc))
                parse_failures += 1
                logger.warning("invalid JSON for %s, retrying: %s", style_no, exc)
                self._sleep(_PARSE_RETRY_DELAY_SECONDS)
                continue
            except RateLimitError as exc:
                if rate_limit_hits >= self._max_retries:
                    logger.error("extraction failed for %s after rate limiting: %s", style_no, exc)
                    return ExtractionResult(style_no=style_no, success=False, error=str(exc))
                rate_limit_hits += 1
                wait = _RATE_LIMIT_BASE_DELAY_SECONDS * 2**rate_limit_hits
                logger.warning("rate limited for %s, waiting %.0fs", style_no, wait)
                self._sleep(wait)
                continue
            except Exception as exc:
                logger.error("extraction failed for %s: %s", style_no, exc)
                return ExtractionResult(style_no=style_no, success=False, error=str(exc))

            logger.info("extracted: %s", style_no)
            return ExtractionResult(style_no=style_no, success=True, data=normalize_bundle(data))
