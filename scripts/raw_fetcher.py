#!/usr/bin/env python3
"""
Raw text fetcher for KMA API Hub typ01 endpoints.

One GET per call, no retries (the orchestrator owns retry policy).
Responses arrive as UTF-8 or EUC-KR depending on endpoint and flags, and the
Content-Type header does not always say which.
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Optional

import requests

from ingest_errors import TransportError

DEFAULT_TIMEOUT_SEC = 30
LEGACY_ENCODING = "euc-kr"
ERROR_SNIPPET_LEN = 160

_LEGACY_CHARSET_RE = re.compile(r"euc-?kr|ks_c_5601|cp949", re.IGNORECASE)
_UTF8_CHARSET_RE = re.compile(r"utf-?8", re.IGNORECASE)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchResult:
    """Decoded response body plus timing."""
    text: str
    latency_ms: int
    http_status: int
    encoding: str


def decode_body(content: bytes, content_type: str = "",
                legacy_encoding: str = LEGACY_ENCODING) -> tuple[str, str]:
    """Decode response bytes.

    Order: declared charset, else UTF-8 with a replacement-character check,
    else the legacy encoding.

    Returns:
        (text, encoding used)
    """
    content_type = (content_type or "").lower()
    if _LEGACY_CHARSET_RE.search(content_type):
        return content.decode(legacy_encoding, errors="replace"), legacy_encoding
    if _UTF8_CHARSET_RE.search(content_type):
        return content.decode("utf-8", errors="replace"), "utf-8"

    text = content.decode("utf-8", errors="replace")
    if "\ufffd" in text:
        return content.decode(legacy_encoding, errors="replace"), legacy_encoding
    return text, "utf-8"


def mask_secret(text: str, secret: Optional[str]) -> str:
    """Hide an access credential in log output."""
    if not secret:
        return text
    return text.replace(secret, "***")


def fetch_text(
    url: str,
    params: Optional[dict] = None,
    timeout: float = DEFAULT_TIMEOUT_SEC,
    session: Optional[requests.Session] = None,
    legacy_encoding: str = LEGACY_ENCODING,
) -> FetchResult:
    """Issue one GET and return the decoded body.

    Raises:
        TransportError: network failure or non-2xx status (carries status
            and latency)
    """
    client = session or requests
    t0 = time.monotonic()
    try:
        response = client.get(url, params=params, timeout=timeout)
    except requests.RequestException as e:
        latency_ms = int((time.monotonic() - t0) * 1000)
        raise TransportError(f"Request failed: {e}", status=None, latency_ms=latency_ms) from e
    latency_ms = int((time.monotonic() - t0) * 1000)

    text, encoding = decode_body(
        response.content,
        response.headers.get("content-type", ""),
        legacy_encoding,
    )

    if not response.ok:
        raise TransportError(
            f"HTTP {response.status_code}: {text[:ERROR_SNIPPET_LEN]}",
            status=response.status_code,
            latency_ms=latency_ms,
        )

    logger.debug("Fetched %d chars (%s) in %d ms", len(text), encoding, latency_ms)
    return FetchResult(text=text, latency_ms=latency_ms,
                       http_status=response.status_code, encoding=encoding)
