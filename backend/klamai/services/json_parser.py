"""
Tolerant parsing of JSON objects returned by LLMs.

Models are told to answer with raw JSON, but regularly wrap it in Markdown
fences or add a sentence before it. Parsing strips the known wrappers, falls
back to the outermost {...} span, and then validates against a pydantic
schema when one is given. A schema mismatch is an error, never coerced.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from klamai.utils.exceptions import LlmJsonParseError

T = TypeVar("T", bound=BaseModel)

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```\s*$")
_OBJECT_SPAN = re.compile(r"\{.*\}", re.DOTALL)


def strip_code_fences(text: str) -> str:
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN.sub("", cleaned)
        cleaned = _FENCE_CLOSE.sub("", cleaned)
    return cleaned.strip()


def extract_json_object(text: str) -> Optional[str]:
    if not text:
        return None
    match = _OBJECT_SPAN.search(text)
    return match.group(0) if match else None


def parse_llm_json(text: str, schema: Optional[Type[T]] = None) -> Any:
    """
    Parse an LLM answer into a dict, or into *schema* when provided.

    Raises LlmJsonParseError when no JSON object can be recovered or when
    the object does not satisfy the schema.
    """
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise LlmJsonParseError("LLM returned an empty response")

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        candidate = extract_json_object(cleaned)
        if candidate is None:
            raise LlmJsonParseError(
                f"LLM did not return a JSON object. Raw response: {cleaned[:300]}"
            )
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as exc:
            raise LlmJsonParseError(
                f"Failed to parse LLM JSON response: {exc}. Raw: {cleaned[:300]}"
            ) from exc

    if not isinstance(data, dict):
        raise LlmJsonParseError(
            f"LLM JSON is not an object (got {type(data).__name__})"
        )

    if schema is None:
        return data

    try:
        return schema.model_validate(data)
    except ValidationError as exc:
        raise LlmJsonParseError(
            f"LLM JSON does not match {schema.__name__}: {exc.errors()}"
        ) from exc
