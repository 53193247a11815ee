"""reqstash executor - outbound HTTP execution."""

import logging
import time
from typing import Any

import requests

from reqstash.core import DEFAULT_TIMEOUT
from reqstash.models import ProxyResponse, parse_body

logger = logging.getLogger(__name__)


def execute_request(
    method: str,
    url: str,
    headers: dict[str, str] | None = None,
    body: str | None = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> ProxyResponse:
    """Execute a fully resolved HTTP request.

    - Parses the response body as JSON when possible, else keeps the text
    - Captures timing
    - Never raises - always returns a ProxyResponse, with error set on failure
    """
    result = ProxyResponse()

    try:
        kwargs: dict[str, Any] = {
            "method": method.upper(),
            "url": url,
            "headers": headers,
            "data": body.encode("utf-8") if body else None,
            "timeout": timeout,
            "allow_redirects": True,
        }

        logger.info("Making request to: %s %s", kwargs["method"], url)
        start = time.monotonic()
        resp = requests.request(**kwargs)
        result.elapsed_ms = (time.monotonic() - start) * 1000

        result.status_code = resp.status_code
        result.status = f"{resp.status_code} {resp.reason or ''}".strip()
        result.headers = dict(resp.headers)
        result.body = parse_body(resp.text)
        logger.info(
            "Request completed: %s (%d bytes)", result.status, len(resp.content or b"")
        )

    except requests.exceptions.Timeout:
        result.error = f"Request timed out after {timeout}s"
    except requests.exceptions.ConnectionError as e:
        result.error = f"Connection error: {e}"
    except requests.exceptions.RequestException as e:
        result.error = f"Request failed: {e}"
    except Exception as e:
        result.error = f"Unexpected error: {e}"

    if result.error:
        logger.warning("Request to %s failed: %s", url, result.error)
    return result
