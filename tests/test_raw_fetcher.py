#!/usr/bin/env python3
"""
Tests for raw_fetcher module.

HTTP is mocked; no network access.
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))
from ingest_errors import TransportError
from raw_fetcher import decode_body, fetch_text, mask_secret

KOREAN = "지점 기온"


def mock_response(content: bytes, status=200, content_type="text/plain"):
    response = MagicMock()
    response.content = content
    response.status_code = status
    response.ok = 200 <= status < 300
    response.headers = {"content-type": content_type}
    return response


class TestDecodeBody:
    """Tests for decode_body."""

    def test_declared_legacy_charset(self):
        text, encoding = decode_body(KOREAN.encode("euc-kr"), "text/plain; charset=EUC-KR")
        assert text == KOREAN
        assert encoding == "euc-kr"

    def test_declared_utf8(self):
        text, encoding = decode_body(KOREAN.encode("utf-8"), "text/plain; charset=utf-8")
        assert text == KOREAN
        assert encoding == "utf-8"

    def test_undeclared_utf8(self):
        text, encoding = decode_body(KOREAN.encode("utf-8"))
        assert text == KOREAN
        assert encoding == "utf-8"

    def test_undeclared_legacy_falls_back(self):
        text, encoding = decode_body(KOREAN.encode("euc-kr"))
        assert text == KOREAN
        assert encoding == "euc-kr"


class TestMaskSecret:
    """Tests for mask_secret."""

    def test_masks(self):
        assert mask_secret("url?authKey=abc123", "abc123") == "url?authKey=***"

    def test_no_secret(self):
        assert mask_secret("url", "") == "url"


class TestFetchText:
    """Tests for fetch_text."""

    def test_success(self):
        session = MagicMock()
        session.get.return_value = mock_response(b"202501011200 108 1.0\n")
        result = fetch_text("https://x/api", params={"stn": "108"}, timeout=5, session=session)
        assert result.text.startswith("202501011200")
        assert result.http_status == 200
        assert result.latency_ms >= 0
        session.get.assert_called_once_with("https://x/api", params={"stn": "108"}, timeout=5)

    def test_http_error_raises_with_status(self):
        session = MagicMock()
        session.get.return_value = mock_response(b"Service Unavailable", status=503)
        with pytest.raises(TransportError) as exc_info:
            fetch_text("https://x/api", session=session)
        assert exc_info.value.status == 503
        assert "HTTP 503: Service Unavailable" in str(exc_info.value)

    def test_network_error_raises(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("refused")
        with pytest.raises(TransportError) as exc_info:
            fetch_text("https://x/api", session=session)
        assert exc_info.value.status is None

    def test_uses_requests_module_without_session(self):
        with patch("raw_fetcher.requests.get", return_value=mock_response(b"1 2\n")) as get:
            result = fetch_text("https://x/api")
        assert result.text == "1 2\n"
        get.assert_called_once()
