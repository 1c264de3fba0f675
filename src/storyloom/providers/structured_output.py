"""Structured output: schema binding and response validation.

All providers use JSON-schema mode. OpenAI-style strict mode (used by the
openai and openrouter profiles) requires every property to be listed in
``required``, so schemas are post-processed with ``_make_all_required``.

Streaming structured calls cannot use the bound runnable (chunks are text),
so the accumulated text is parsed with ``parse_json_text`` which tolerates
code fences and chatter around the JSON payload.
"""

from __future__ import annotations

import copy
import json
import re
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ValidationError

from storyloom.observability.logging import get_logger
from storyloom.providers.base import StructuredOutputError
from storyloom.providers.content import extract_text
from storyloom.settings.models import ProviderKind

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel
    from langchain_core.runnables import Runnable

log = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)

_STRICT_KINDS = frozenset({ProviderKind.OPENAI, ProviderKind.OPENROUTER})
_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def _make_all_required(schema: dict[str, Any], schema_name: str = "root") -> dict[str, Any]:
    """Make every property required, recursively (mutates and returns ``schema``)."""
    if "properties" in schema:
        schema["required"] = sorted(schema["properties"].keys())
        for prop_name, prop_schema in schema["properties"].items():
            if isinstance(prop_schema, dict):
                _make_all_required(prop_schema, schema_name=f"{schema_name}.{prop_name}")

    if "items" in schema and isinstance(schema["items"], dict):
        _make_all_required(schema["items"], schema_name=f"{schema_name}[]")

    for def_name, def_schema in schema.get("$defs", {}).items():
        if isinstance(def_schema, dict):
            _make_all_required(def_schema, schema_name=def_name)

    return schema


def json_schema_for(schema: type[BaseModel], provider_kind: ProviderKind) -> dict[str, Any]:
    """Return the JSON schema to send for ``schema`` on a provider family."""
    json_schema = schema.model_json_schema()
    if provider_kind in _STRICT_KINDS:
        # Deep copy: pydantic caches the schema dict
        json_schema = _make_all_required(copy.deepcopy(json_schema), schema.__name__)
    return json_schema


def with_structured_output(
    model: BaseChatModel,
    schema: type[BaseModel],
    provider_kind: ProviderKind,
) -> Runnable[Any, Any]:
    """Wrap a model so it answers in ``schema``'s JSON shape.

    The runnable returns the ``include_raw`` dict
    ``{"raw": AIMessage, "parsed": ..., "parsing_error": ...}``; pass it to
    ``validate_structured_result``.
    """
    strict = provider_kind in _STRICT_KINDS
    return model.with_structured_output(
        json_schema_for(schema, provider_kind),
        method="json_schema",
        include_raw=True,
        strict=True if strict else None,
    )


def strip_null_values(data: Any) -> Any:
    """Recursively drop ``None`` values from dicts.

    Models often emit explicit nulls for optional fields; treating them as
    absent lets pydantic apply the field default.
    """
    if isinstance(data, dict):
        return {k: strip_null_values(v) for k, v in data.items() if v is not None}
    if isinstance(data, list):
        return [strip_null_values(v) for v in data]
    return data


def parse_json_text(text: str) -> Any:
    """Extract and parse a JSON value from model output text.

    Tries, in order: the whole text, the first fenced code block, and the
    widest ``{...}`` / ``[...]`` span.

    Raises:
        ValueError: If no JSON value can be recovered.
    """
    candidates: list[str] = [text.strip()]

    fence = _FENCE_RE.search(text)
    if fence:
        candidates.append(fence.group(1).strip())

    for open_ch, close_ch in (("{", "}"), ("[", "]")):
        start, end = text.find(open_ch), text.rfind(close_ch)
        if start != -1 and end > start:
            candidates.append(text[start : end + 1])

    for candidate in candidates:
        if not candidate:
            continue
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue

    raise ValueError("no JSON value found in model output")


def validate_payload(data: Any, schema: type[T], provider: str) -> T:
    """Validate parsed JSON against ``schema``.

    Raises:
        StructuredOutputError: If validation fails.
    """
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(strip_null_values(data))
    except ValidationError as e:
        log.warning(
            "structured_output_invalid",
            schema=schema.__name__,
            errors=e.error_count(),
        )
        raise StructuredOutputError(
            provider, f"Response does not match {schema.__name__}: {e}"
        ) from e


def validate_text(text: str, schema: type[T], provider: str) -> T:
    """Parse model output text and validate it against ``schema``.

    Raises:
        StructuredOutputError: If the text has no JSON or fails validation.
    """
    try:
        data = parse_json_text(text)
    except ValueError as e:
        log.warning("structured_output_unparseable", schema=schema.__name__, length=len(text))
        raise StructuredOutputError(provider, f"Response is not valid JSON: {e}") from e
    return validate_payload(data, schema, provider)


def validate_structured_result(raw_result: Any, schema: type[T], provider: str) -> T:
    """Turn an ``include_raw=True`` result into a validated ``schema`` instance.

    Falls back to parsing the raw message text when the integration could not
    parse the response itself.

    Raises:
        StructuredOutputError: If no valid value can be produced.
    """
    if isinstance(raw_result, dict) and "parsed" in raw_result:
        parsed = raw_result.get("parsed")
        if parsed is not None:
            return validate_payload(parsed, schema, provider)

        raw = raw_result.get("raw")
        content = extract_text(getattr(raw, "content", None))
        if content:
            log.debug("structured_output_fallback_parse", schema=schema.__name__)
            return validate_text(content, schema, provider)

        error = raw_result.get("parsing_error")
        raise StructuredOutputError(provider, f"No structured output produced: {error}")

    return validate_payload(raw_result, schema, provider)
