# video_recipe/app/services/response_normalizer.py
"""
Recovery of structured data from free-form model output.

Strategies run in order and the first success wins:
1. full_json          whole text is a JSON object with the required field
2. embedded_object    first balanced {...} inside the text that qualifies
3. streamed_fragments newline-delimited partials bearing `.response`, joined then retried with 1-2
4. field_regex        schema specific regex extraction
5. placeholder        fixed fallback object

Results from tiers 3-5 carry a ParseDegraded record. normalize() never raises.
"""
from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional

from video_recipe.app.domain.errors import ParseDegraded
from video_recipe.app.infra.ai.ollama_provider import join_stream_fragments
from video_recipe.app.schemas.recipes import DEFAULT_DESCRIPTION, DEFAULT_TITLE

logger = logging.getLogger(__name__)

EXCERPT_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 500
HANDLE_TRAILING_PUNCTUATION = ".,;:!?)"

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_TITLE_RE = re.compile(
    r"""(?i)\btitle["']?\s*[:=]\s*"""
    r"""(?:"([^"\n]+)"|'([^\n]+?)'(?=\s*(?:[,;}\n]|$))|["']?([^\n{}"]+))"""
)
_SOCIAL_RE = re.compile(r"""(?i)SOCIAL:\s*([a-z0-9_ .-]+?)\s*:\s*@?([^\s'"`,‘’]+)""")
_SOCIAL_NONE_RE = re.compile(r"(?i)SOCIAL:\s*none\b")


@dataclass(frozen=True)
class ResponseSchema:
    """What a caller expects back from the model."""
    name: str
    required_field: str
    placeholder: dict[str, Any]
    regex_extractor: Callable[[str], Optional[dict[str, Any]]]


@dataclass
class NormalizedResult:
    value: dict[str, Any]
    strategy: str
    degraded: Optional[ParseDegraded] = None

    @property
    def is_degraded(self) -> bool:
        return self.degraded is not None


def _strip_fences(text: str) -> str:
    match = _FENCE_RE.search(text)
    return match.group(1).strip() if match else text.strip()


def iter_balanced_objects(text: str) -> Iterator[str]:
    """Yield every balanced {...} substring, skipping braces inside string literals."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escape = False
        end = -1
        for idx in range(start, len(text)):
            ch = text[idx]
            if in_string:
                if escape:
                    escape = False
                elif ch == "\\":
                    escape = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    end = idx
                    break
        if end != -1:
            yield text[start:end + 1]
        start = text.find("{", start + 1)


def _qualifies(value: Any, schema: ResponseSchema) -> bool:
    return isinstance(value, dict) and schema.required_field in value


class ParseStrategy(ABC):
    name: str = "abstract"
    degraded: bool = False

    @abstractmethod
    def parse(self, text: str, schema: ResponseSchema) -> Optional[dict[str, Any]]:
        pass


class FullJsonStrategy(ParseStrategy):
    name = "full_json"

    def parse(self, text: str, schema: ResponseSchema) -> Optional[dict[str, Any]]:
        candidate = _strip_fences(text)
        if not candidate:
            return None
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            return None
        return value if _qualifies(value, schema) else None


class EmbeddedObjectStrategy(ParseStrategy):
    name = "embedded_object"

    def parse(self, text: str, schema: ResponseSchema) -> Optional[dict[str, Any]]:
        for snippet in iter_balanced_objects(text):
            try:
                value = json.loads(snippet)
            except json.JSONDecodeError:
                continue
            if _qualifies(value, schema):
                return value
        return None


class StreamedFragmentsStrategy(ParseStrategy):
    name = "streamed_fragments"
    degraded = True

    def __init__(self, inner: Optional[list[ParseStrategy]] = None):
        self._inner = inner or [FullJsonStrategy(), EmbeddedObjectStrategy()]

    def parse(self, text: str, schema: ResponseSchema) -> Optional[dict[str, Any]]:
        joined = join_stream_fragments(text)
        if joined is None:
            return None
        for strategy in self._inner:
            value = strategy.parse(joined, schema)
            if value is not None:
                return value
        return None


class FieldRegexStrategy(ParseStrategy):
    name = "field_regex"
    degraded = True

    def parse(self, text: str, schema: ResponseSchema) -> Optional[dict[str, Any]]:
        return schema.regex_extractor(text)


class PlaceholderStrategy(ParseStrategy):
    name = "placeholder"
    degraded = True

    def parse(self, text: str, schema: ResponseSchema) -> Optional[dict[str, Any]]:
        return dict(schema.placeholder)


def sanitize_text(text: str) -> str:
    cleaned = re.sub(r"[{}\[\]\"`*#]", " ", text)
    cleaned = re.sub(r"\s+", " ", cleaned).strip(" ,:;-")
    return cleaned[:MAX_DESCRIPTION_LENGTH].strip()


def extract_title_fields(text: str) -> Optional[dict[str, Any]]:
    """`Title: My Dish` style output; the rest of the text becomes the description."""
    match = _TITLE_RE.search(text)
    if not match:
        return None
    title = next(group for group in match.groups() if group is not None)
    title = title.strip().strip("*,.;").strip()
    if not title:
        return None
    remainder = text[:match.start()] + " " + text[match.end():]
    remainder = re.sub(r"(?i)\bdescription[\"']?\s*[:=]", " ", remainder)
    return {"title": title, "description": sanitize_text(remainder) or DEFAULT_DESCRIPTION}


def extract_social_sentinel(text: str) -> Optional[dict[str, Any]]:
    """`SOCIAL:platform:handle` or `SOCIAL:none`."""
    match = _SOCIAL_RE.search(text)
    if match and match.group(1).strip().lower() != "none":
        handle = match.group(2).strip().rstrip(HANDLE_TRAILING_PUNCTUATION)
        if handle:
            return {"platform": match.group(1).strip().lower(), "handle": handle}
    if _SOCIAL_NONE_RE.search(text):
        return {"platform": None, "handle": None}
    return None


RECIPE_SUMMARY_SCHEMA = ResponseSchema(
    name="recipe_summary",
    required_field="title",
    placeholder={"title": DEFAULT_TITLE, "description": DEFAULT_DESCRIPTION},
    regex_extractor=extract_title_fields,
)

SOCIAL_HANDLE_SCHEMA = ResponseSchema(
    name="social_handle",
    required_field="handle",
    placeholder={"platform": None, "handle": None},
    regex_extractor=extract_social_sentinel,
)


@dataclass
class ResponseNormalizer:
    strategies: list[ParseStrategy] = field(
        default_factory=lambda: [
            FullJsonStrategy(),
            EmbeddedObjectStrategy(),
            StreamedFragmentsStrategy(),
            FieldRegexStrategy(),
            PlaceholderStrategy(),
        ]
    )

    def normalize(self, text: Optional[str], schema: ResponseSchema) -> NormalizedResult:
        raw = text or ""
        for strategy in self.strategies:
            try:
                value = strategy.parse(raw, schema)
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.warning("Strategy %s raised on %s output: %s", strategy.name, schema.name, e)
                continue
            if value is None:
                continue

            degraded = None
            if strategy.degraded:
                degraded = ParseDegraded(strategy.name, raw[:EXCERPT_LENGTH])
                logger.warning(
                    "Degraded %s parse: strategy=%s, excerpt=%r",
                    schema.name,
                    strategy.name,
                    raw[:80],
                )
            return NormalizedResult(value=value, strategy=strategy.name, degraded=degraded)

        # Only reachable when the placeholder strategy was left out of the chain.
        return NormalizedResult(
            value=dict(schema.placeholder),
            strategy=PlaceholderStrategy.name,
            degraded=ParseDegraded(PlaceholderStrategy.name, raw[:EXCERPT_LENGTH]),
        )


def normalize(text: Optional[str], schema: ResponseSchema = RECIPE_SUMMARY_SCHEMA) -> NormalizedResult:
    return ResponseNormalizer().normalize(text, schema)
