"""Protection of non-translatable substrings around a backend call."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

logger = logging.getLogger(__name__)

SENTINEL_TEMPLATE = "⟦F{index}⟧"
SENTINEL_PATTERN = re.compile(r"⟦F(\d+)⟧")

# Priority order: earlier classes win when candidate matches overlap.
PATTERN_CLASSES: Sequence[Tuple[str, re.Pattern[str]]] = (
    (
        "variable",
        re.compile(
            r"\{\{\s*[\w.\-]+\s*\}\}"
            r"|\{[\w.\-]+(?:,[^{}]*)?\}"
            r"|%\(\w+\)[sdif]"
            r"|%\d+\$[sdif]"
            r"|%[sdif@]"
        ),
    ),
    (
        "url",
        re.compile(r"(?:https?://|ftp://|www\.)[^\s<>\"']*[^\s<>\"'.,;:!?)\]]"),
    ),
    (
        "email",
        re.compile(r"[\w.+\-]+@[\w\-]+(?:\.[\w\-]+)*\.[A-Za-z]{2,}"),
    ),
    (
        "number",
        re.compile(
            r"(?<![\w/\-.])(?<!\d:)"
            r"[$€£¥₹]?\d+(?:[.,]\d+)*(?:%|\s?(?:USD|EUR|GBP|JPY))?"
            r"(?![\w/]|[\-.:]\d)"
        ),
    ),
    (
        "date",
        re.compile(
            r"\b\d{4}-\d{2}-\d{2}(?:[T ]\d{2}:\d{2}(?::\d{2})?)?\b"
            r"|\b\d{1,2}[/.]\d{1,2}[/.]\d{2,4}\b"
            r"|\b\d{1,2}:\d{2}(?::\d{2})?\b"
        ),
    ),
)


@dataclass
class ProtectedSpan:
    """An original substring hidden behind a sentinel."""

    kind: str
    start: int
    end: int
    text: str


@dataclass
class RecoveryToken:
    """Everything needed to put the protected substrings back."""

    spans: List[ProtectedSpan] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.spans)


def _collect_spans(text: str) -> List[ProtectedSpan]:
    accepted: List[ProtectedSpan] = []
    for kind, pattern in PATTERN_CLASSES:
        for match in pattern.finditer(text):
            start, end = match.span()
            if start == end:
                continue
            if any(start < span.end and span.start < end for span in accepted):
                continue
            accepted.append(ProtectedSpan(kind=kind, start=start, end=end, text=match.group()))
    accepted.sort(key=lambda span: span.start)
    return accepted


def protect(text: str) -> Tuple[str, RecoveryToken]:
    """Replace protected substrings of ``text`` with numbered sentinels."""

    if SENTINEL_PATTERN.search(text):
        logger.debug("Text already contains sentinel-like markers, leaving it unprotected: %r", text)
        return text, RecoveryToken()

    spans = _collect_spans(text)
    if not spans:
        return text, RecoveryToken()

    pieces: List[str] = []
    cursor = 0
    for index, span in enumerate(spans):
        pieces.append(text[cursor:span.start])
        pieces.append(SENTINEL_TEMPLATE.format(index=index))
        cursor = span.end
    pieces.append(text[cursor:])
    return "".join(pieces), RecoveryToken(spans=spans)


def find_mismatches(text: str, token: RecoveryToken) -> List[str]:
    """Describe sentinels the backend dropped, duplicated or invented."""

    counts = [0] * len(token.spans)
    problems: List[str] = []
    for match in SENTINEL_PATTERN.finditer(text):
        index = int(match.group(1))
        if index < len(counts):
            counts[index] += 1
        else:
            problems.append(f"unknown sentinel {match.group()}")
    for index, count in enumerate(counts):
        sentinel = SENTINEL_TEMPLATE.format(index=index)
        if count == 0:
            problems.append(f"missing sentinel {sentinel} for {token.spans[index].text!r}")
        elif count > 1:
            problems.append(f"sentinel {sentinel} repeated {count} times")
    return problems


def restore(text: str, token: RecoveryToken, *, warn: bool = True) -> str:
    """Put the original substrings back in place of their sentinels.

    A sentinel the backend dropped is logged and nothing is inserted for it;
    repeated sentinels are all restored. Unknown sentinels are left as-is.
    Pass ``warn=False`` when the caller reports :func:`find_mismatches` itself.
    """

    if not token:
        return text

    if warn:
        for problem in find_mismatches(text, token):
            logger.warning("Format guard: %s in %r", problem, text)

    def _substitute(match: re.Match[str]) -> str:
        index = int(match.group(1))
        if index < len(token.spans):
            return token.spans[index].text
        return match.group()

    return SENTINEL_PATTERN.sub(_substitute, text)
