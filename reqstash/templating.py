"""reqstash templating - {{...}} substitution over URLs, headers and bodies.

Two passes per string:

1. Response references, {{"Name".path}}, are resolved against the named
   request's recorded ``lastResponse``. Object/array values are spliced raw
   when the token sits inside a JSON string ("{{...}}"), so a body template
   can embed structured data from an earlier response.
2. Environment variables, {{key}}, are replaced with their resolved values.

Unresolvable references are left in place (or become "") and never raise:
one bad token must not stop a request from being sent.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from reqstash.core import resolve_variable_value
from reqstash.models import Body, Document, SavedRequest, Variable, parse_body
from reqstash.references import (
    ReferenceSyntaxError,
    extract_field,
    looks_like_reference,
    parse_reference,
)

logger = logging.getLogger(__name__)

TOKEN_RE = re.compile(r"\{\{[^}]*\}\}")


@dataclass
class ResolvedRequest:
    url: str
    method: str
    headers: dict[str, str] = field(default_factory=dict)
    body: Body = field(default_factory=lambda: parse_body(None))


class TemplateEngine:
    """Substitutes tokens using a request lookup and a variable list."""

    def __init__(
        self,
        lookup: Callable[[str], SavedRequest | None],
        variables: list[Variable] | None = None,
        env: Mapping[str, str] | None = None,
    ):
        self.lookup = lookup
        self.variables = list(variables or [])
        self.env = env

    @classmethod
    def for_document(cls, doc: Document, env: Mapping[str, str] | None = None) -> TemplateEngine:
        """Bind to one loaded document and its current environment."""
        active = doc.active_environment()
        variables = active.variables if active else []
        return cls(doc.find_request, variables, env)

    def render(self, text: str) -> str:
        if not text:
            return text

        result = text
        for token in TOKEN_RE.findall(text):
            if looks_like_reference(token):
                result = self._substitute_reference(result, token)

        for variable in self.variables:
            if not variable.key:
                continue
            value = resolve_variable_value(variable.value, self.env)
            result = result.replace("{{" + variable.key + "}}", value)

        return result

    def render_request(
        self,
        url: str,
        method: str,
        headers: Mapping[str, str] | None = None,
        body: object = None,
    ) -> ResolvedRequest:
        """Render every templated part of a request.

        The body is rendered as text and parsed back, so structured bodies
        come out structured (unless substitution broke the JSON).
        """
        rendered_headers = {}
        for key, value in (headers or {}).items():
            rendered_headers[self.render(key)] = self.render(value)

        body_text = parse_body(body).to_text()
        return ResolvedRequest(
            url=self.render(url),
            method=method,
            headers=rendered_headers,
            body=parse_body(self.render(body_text)),
        )

    # ── internals ────────────────────────────────────────────────────

    def _substitute_reference(self, text: str, token: str) -> str:
        try:
            ref = parse_reference(token)
        except ReferenceSyntaxError as e:
            logger.debug("Skipping %s: %s", token, e)
            return text

        request = self.lookup(ref.request_name)
        if request is None:
            logger.debug("Skipping %s: no request named %r", token, ref.request_name)
            return text
        if request.last_response is None:
            logger.debug("Skipping %s: %r has no recorded response", token, ref.request_name)
            return text

        try:
            value, is_object = extract_field(request.last_response.body, ref.field_path)
        except (TypeError, ValueError) as e:
            logger.debug("Skipping %s: %s", token, e)
            return text

        if is_object:
            quoted = f'"{token}"'
            if quoted in text:
                return text.replace(quoted, value)
        return text.replace(token, value)


def render_for_document(
    doc: Document,
    url: str,
    method: str,
    headers: Mapping[str, str] | None = None,
    body: object = None,
    env: Mapping[str, str] | None = None,
) -> ResolvedRequest:
    """Shortcut: render a request against a document's current environment."""
    engine = TemplateEngine.for_document(doc, env)
    resolved = engine.render_request(url, method, headers, body)
    if resolved.url != url:
        logger.info("Processed URL: %s -> %s", url, resolved.url)
    return resolved
