"""reqstash references - {{"Name".path}} tokens and response field extraction."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from reqstash.models import Body, TextBody, encode_json

logger = logging.getLogger(__name__)

FULL_RESPONSE = "response"

# Opening quote styles, escaped first: a token copied out of a JSON string
# arrives as {{\"Name\".path}}.
_QUOTES = ('\\"', '"')


class ReferenceSyntaxError(ValueError):
    """Token is not a well-formed response reference."""


@dataclass(frozen=True)
class ResponseReference:
    request_name: str
    field_path: str
    is_full_response: bool


def looks_like_reference(token: str) -> bool:
    """Cheap pre-check used before parsing: any quote inside the braces."""
    return '"' in token


def parse_reference(token: str) -> ResponseReference:
    """Decompose a response reference token.

    The token includes its delimiters:

        {{"Login".data.token}}     → ("Login", "data.token")
        {{\\"Login\\".response}}     → ("Login", "response"), full response

    The request name ends at the first quote immediately followed by ".",
    so a name may contain dots but not that sequence. Raises
    ReferenceSyntaxError for anything else.
    """
    if not token.startswith("{{") or not token.endswith("}}"):
        raise ReferenceSyntaxError(f"invalid token format: {token!r}")

    content = token[2:-2].strip()

    quote = next((q for q in _QUOTES if content.startswith(q)), None)
    if quote is None:
        raise ReferenceSyntaxError("not a response reference - doesn't start with quote")

    end = content.find(quote + ".", len(quote))
    if end == -1:
        raise ReferenceSyntaxError("unclosed quote or missing field separator")

    request_name = content[len(quote) : end]
    field_path = content[end + len(quote) + 1 :]
    logger.debug("Parsed reference: request=%r field=%r", request_name, field_path)

    if not request_name:
        raise ReferenceSyntaxError("empty request name")
    if not field_path:
        raise ReferenceSyntaxError("empty field path")

    return ResponseReference(
        request_name=request_name,
        field_path=field_path,
        is_full_response=field_path == FULL_RESPONSE,
    )


def extract_field(body: Body, field_path: str) -> tuple[str, bool]:
    """Pull a value out of a recorded response body.

    Returns (text, is_object). is_object is True only when text is a JSON
    object or array that may be spliced into a JSON document as is.

    A missing key, or a path that runs into a non-object, yields ("", False):
    absence is not an error. Encoding errors propagate.
    """
    if field_path == FULL_RESPONSE:
        if isinstance(body, TextBody):
            return body.text, False
        if body.value is None:
            return "", False
        return encode_json(body.value), True

    # Text has no fields, but a path of only dots still reaches the text itself.
    current: Any = body.text if isinstance(body, TextBody) else body.value
    for part in field_path.split("."):
        if not part:
            continue
        if not isinstance(current, dict) or part not in current:
            return "", False
        current = current[part]

    if isinstance(current, str):
        return current, False
    if current is None:
        return "", False
    if isinstance(current, dict | list):
        return encode_json(current), True
    return encode_json(current), False
