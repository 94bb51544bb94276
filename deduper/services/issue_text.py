"""Parsing of crash report issue bodies and maintainer comments"""

import re
from typing import List, Optional

# Reports wrap the stack trace in a fenced code block.
TRACE_MARKER = "\n```\n"
PLACEHOLDER_TITLE = "[auto-generated] Exception in plugin"
FRAME_PREFIX = "\tat com.demonwav.mcdev"
MAX_TITLE_LENGTH = 255

_NUMBER_RE = re.compile(r"\d+")
_NEWLINE_RE = re.compile(r"[\r\n]+")
_DUPLICATE_RE = re.compile(r"\s*duplicate of\s+#(\d+)\s*", re.IGNORECASE)


def extract_stacktrace(body: Optional[str], frame_prefix: str = FRAME_PREFIX) -> Optional[List[str]]:
    """Return the normalized trace lines of a report body, or None if it has none.

    The trace is the text between the first two code fence markers. Digits are
    dropped so that line numbers and lambda indices don't split otherwise equal
    traces, and only frames from the plugin's own packages are kept.
    """
    if not body:
        return None

    start = body.find(TRACE_MARKER)
    if start == -1:
        return None
    start += len(TRACE_MARKER)
    end = body.find(TRACE_MARKER, start)
    if end == -1:
        return None

    stacktrace = _NUMBER_RE.sub("", body[start:end])
    stacktrace = _NEWLINE_RE.sub("\n", stacktrace)

    lines = []
    for line in stacktrace.split("\n"):
        if not line.startswith(frame_prefix):
            continue
        line = line.strip()
        if line.startswith("at "):
            line = line[3:]
        lines.append(line)

    # A trace without any plugin frame can't tell two reports apart.
    return lines or None


def derive_title(title: str, body: Optional[str], placeholder: str = PLACEHOLDER_TITLE) -> str:
    """Derive a readable title from the exception line of a placeholder-titled report.

    Titles that were already changed (by us or by a maintainer) are kept.
    """
    if title != placeholder:
        return title

    body = body or ""
    _, sep, rest = body.partition(TRACE_MARKER)
    if not sep:
        rest = body
    new_title = rest.split("\n", 1)[0]

    if not new_title:
        return placeholder
    if len(new_title) > MAX_TITLE_LENGTH:
        return new_title[: MAX_TITLE_LENGTH - 3] + "..."
    return new_title


def parse_duplicate_of(body: Optional[str]) -> Optional[int]:
    """Return N for a comment consisting only of "Duplicate of #N"."""
    if not body:
        return None
    m = _DUPLICATE_RE.fullmatch(body)
    if not m:
        return None
    try:
        number = int(m.group(1))
    except ValueError:
        return None
    return number if number > 0 else None
