"""reqstash proxy - resolve, execute, and record requests."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from reqstash import executor
from reqstash.core import DEFAULT_TIMEOUT
from reqstash.errors import NotFoundError, ValidationError
from reqstash.models import Document, ProxyResponse, SavedRequest
from reqstash.store import DocumentStore
from reqstash.templating import TemplateEngine, render_for_document

logger = logging.getLogger(__name__)


def _execute(resolved, timeout) -> ProxyResponse:
    body_text = resolved.body.to_text()
    return executor.execute_request(
        method=resolved.method,
        url=resolved.url,
        headers=resolved.headers,
        body=body_text or None,
        timeout=timeout,
    )


def proxy(
    store: DocumentStore,
    url: str,
    method: str = "",
    headers: Mapping[str, str] | None = None,
    body: Any = None,
    timeout: int = DEFAULT_TIMEOUT,
    env: Mapping[str, str] | None = None,
) -> ProxyResponse:
    """Execute an ad-hoc request with the current environment's variables.

    Nothing is persisted.
    """
    if not url:
        raise ValidationError("URL is required")
    doc = store.load()
    resolved = render_for_document(doc, url, method or "GET", headers, body, env)
    return _execute(resolved, timeout)


def _lookup(doc: Document, name_or_id: str) -> SavedRequest:
    req = doc.find_request(name_or_id) or doc.request_by_id(name_or_id)
    if req is None:
        raise NotFoundError(f"Request not found: {name_or_id}")
    return req


def find_saved(store: DocumentStore, name_or_id: str) -> SavedRequest:
    """Look a saved request up by exact name, then by id."""
    return _lookup(store.load(), name_or_id)


def send(
    store: DocumentStore,
    name_or_id: str,
    timeout: int = DEFAULT_TIMEOUT,
    env: Mapping[str, str] | None = None,
) -> ProxyResponse:
    """Resolve and execute a saved request, recording the result.

    A successful response becomes the request's lastResponse, which later
    {{"Name".path}} references read. A failed call (error set) is returned
    but not recorded, so the previous response stays available.
    """
    doc = store.load()
    req = _lookup(doc, name_or_id)

    resolved = render_for_document(doc, req.url, req.method or "GET", req.headers, req.body, env)
    response = _execute(resolved, timeout)

    if response.error:
        logger.warning("Not recording failed response for %s: %s", req.name, response.error)
    else:
        store.record_response(req.id, response)
    return response


def resolve_text(store: DocumentStore, text: str, env: Mapping[str, str] | None = None) -> str:
    """Render one string against the current environment."""
    return TemplateEngine.for_document(store.load(), env).render(text)
