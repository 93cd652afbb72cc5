#!/usr/bin/env python3
"""
Table normalizer for KMA typ01 text responses.

The typ01 endpoints return loosely formatted tables: '#' comment blocks
(sometimes carrying the column header), data rows that are either
comma- or whitespace-delimited, and with disp=1 decorative box-drawing
borders around everything.
"""

import csv
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from ingest_errors import TableParseError

COMMENT_MARKER = "#"

# Values at or below this are KMA "missing" sentinels (-9, -99, -999 ...)
MISSING_THRESHOLD = -8.9

MODE_COMMA = "comma"
MODE_WHITESPACE = "whitespace"

_BORDER_RE = re.compile(r"^[\s|│┃┆┊\-─━┈┉┄┅=+]+$")
_BAR_GLYPHS_RE = re.compile(r"[│┃┆┊]")
_PIPE_RE = re.compile(r"\s*\|\s*")
_NUMBER_NOISE_RE = re.compile(r"[|│┃┆┊,]")


@dataclass
class NormalizedTable:
    """Comment lines and equal-width token rows from one response."""
    comments: list = field(default_factory=list)
    rows: list = field(default_factory=list)
    mode: str = MODE_WHITESPACE

    @property
    def width(self) -> int:
        return len(self.rows[0]) if self.rows else 0


def parse_number(token: Optional[str]) -> Optional[float]:
    """Parse a numeric token, returning None for text and missing sentinels."""
    if token is None:
        return None
    cleaned = _NUMBER_NOISE_RE.sub("", str(token)).strip()
    if not cleaned:
        return None
    try:
        value = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(value) or value <= MISSING_THRESHOLD:
        return None
    return value


def to_lines(text: str) -> list[str]:
    """Split text into non-blank lines with BOMs and trailing space removed."""
    text = text.replace("\ufeff", "")
    return [line.rstrip() for line in text.splitlines() if line.strip()]


def split_comments(lines: list[str]) -> tuple[list[str], list[str]]:
    """Separate comment lines (marker stripped) from data lines."""
    comments = []
    data = []
    for line in lines:
        stripped = line.strip()
        if stripped.startswith(COMMENT_MARKER):
            comments.append(stripped.lstrip(COMMENT_MARKER).strip())
        else:
            data.append(line)
    return comments, data


def strip_decor(lines: list[str]) -> list[str]:
    """Drop border-only lines and turn inline bar separators into spaces."""
    cleaned = []
    for line in lines:
        if _BORDER_RE.match(line):
            continue
        line = _BAR_GLYPHS_RE.sub(" ", line)
        line = _PIPE_RE.sub(" ", line)
        if line.strip():
            cleaned.append(line)
    return cleaned


def detect_mode(lines: list[str]) -> str:
    """Comma mode if any data line contains a comma."""
    return MODE_COMMA if any("," in line for line in lines) else MODE_WHITESPACE


def split_line(line: str, mode: str) -> list[str]:
    """Tokenize one line; comma mode honours quoted fields ("" is a literal quote)."""
    s = line.strip().lstrip(COMMENT_MARKER).strip()
    if mode == MODE_COMMA:
        tokens = next(csv.reader([s]), [])
        return [t.strip() for t in tokens]
    return s.split()


def has_numeric(tokens: list[str]) -> bool:
    """True if at least one token parses as a number (sentinels count)."""
    for token in tokens:
        cleaned = _NUMBER_NOISE_RE.sub("", token).strip()
        try:
            if math.isfinite(float(cleaned)):
                return True
        except ValueError:
            continue
    return False


def normalize_table(text: str, min_columns: int = 2) -> NormalizedTable:
    """Turn a raw response into a NormalizedTable.

    Rows without any numeric token (titles, annotations, bare header rows)
    and rows whose width differs from the modal width are dropped.

    Raises:
        TableParseError: no data rows survive
    """
    comments, data = split_comments(to_lines(text))
    data = strip_decor(data)
    if not data:
        raise TableParseError("no data rows")

    mode = detect_mode(data)
    rows = [split_line(line, mode) for line in data]
    rows = [r for r in rows if len(r) >= min_columns and has_numeric(r)]
    if not rows:
        raise TableParseError("no rows with numeric values")

    widths = Counter(len(r) for r in rows)
    modal_width = widths.most_common(1)[0][0]
    rows = [r for r in rows if len(r) == modal_width]

    return NormalizedTable(comments=comments, rows=rows, mode=mode)
