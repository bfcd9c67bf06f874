"""Cleanup and structuring of the critique text returned by the chat service.

The upstream text arrives with leftover JSON escapes, finish-signal fragments
and repeated blocks (the service streams deltas and then replays the full
message). The functions here turn it into a report body and a download link.
They are pure and never raise on string input.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from .config import ProtocolConfig

DEFAULT_PROTOCOL = ProtocolConfig()

# A whole backslash run goes with the escape it precedes, so one pass
# resolves any escaping depth. The lookbehind anchors matches at run starts.
_ESCAPE_RUN = re.compile(r'(?<!\\)\\+(r\\+n|[nt"/])')
_ESCAPE_REPLACEMENTS = {"n": "\n", "t": "  ", '"': '"', "/": "/"}
# Only a backslash trailing text on its line; a lone "\" line is left for
# the deduplicator to drop.
_CONTINUATION = re.compile(r"(?<=[^\n\\])\\+[ \t]*\n")
_MAX_NORMALIZE_PASSES = 5
_BLANK_RUN = re.compile(r"\n{3,}")
_TRAILING_SPACE = re.compile(r"[ \t]+$", re.MULTILINE)
_WHITESPACE = re.compile(r"\s+")
_PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n\s*")
_URL = re.compile(r"[A-Za-z][A-Za-z0-9+.\-]*://[^\s<>\"'，。；、）)\]】]+")


@dataclass(frozen=True)
class StructuredReport:
    """Download link and report body split out of the critique text."""

    download_link: str
    analysis_content: str

    def to_dict(self) -> dict[str, str]:
        return {"downloadLink": self.download_link, "analysisContent": self.analysis_content}


def _finish_patterns(protocol: ProtocolConfig) -> list[re.Pattern]:
    msg_type = re.escape(protocol.finish_msg_type)
    return [
        re.compile(r'\{\\"msg_type\\":\\"' + msg_type + r'\\".*?\}', re.DOTALL),
        re.compile(r'\{"msg_type":"' + msg_type + r'".*?\}', re.DOTALL),
    ]


def _leading_fragment_pattern(protocol: ProtocolConfig) -> re.Pattern:
    error_prefix = re.escape(protocol.error_prefix)
    return re.compile(r"\A\{[^}]*\}(?=\s*" + error_prefix + r"|\s*[^\x00-\x7f]|\s*\Z)")


def _resolve_escape(match: re.Match) -> str:
    token = match.group(1)
    if token[0] == "r":
        return "\n"
    return _ESCAPE_REPLACEMENTS[token]


def _normalize_once(text: str, protocol: ProtocolConfig) -> str:
    text = _ESCAPE_RUN.sub(_resolve_escape, text)
    text = _CONTINUATION.sub("\n", text)

    for pattern in _finish_patterns(protocol):
        text = pattern.sub("", text)
    text = _leading_fragment_pattern(protocol).sub("", text)

    text = text.replace("\r\n", "\n")
    text = _BLANK_RUN.sub("\n\n", text)
    text = _TRAILING_SPACE.sub("", text)
    return text.strip()


def normalize_text(text: str | None, protocol: ProtocolConfig = DEFAULT_PROTOCOL) -> str:
    """Resolve escapes, drop noise fragments and collapse blank-line runs.

    The pipeline repeats until nothing changes, since removing a fragment can
    expose a new escape. Ordinary text settles in one or two passes; the pass
    count is capped so crafted input stays linear.
    """
    text = text or ""
    for _ in range(_MAX_NORMALIZE_PASSES):
        cleaned = _normalize_once(text, protocol)
        if cleaned == text:
            break
        text = cleaned
    return text


def _norm(line: str) -> str:
    return _WHITESPACE.sub(" ", line).strip()


def _dedupe_paragraphs(text: str) -> str:
    seen: set[str] = set()
    kept: list[str] = []
    for paragraph in _PARAGRAPH_BREAK.split(text):
        key = _norm(paragraph)
        if not key or key in seen:
            continue
        seen.add(key)
        kept.append(paragraph.strip())
    return "\n\n".join(kept)


def _dedupe_adjacent_lines(text: str, min_length: int) -> str:
    result: list[str] = []
    prev = ""
    for line in text.split("\n"):
        norm = _norm(line)
        if norm and norm == prev and len(norm) >= min_length:
            continue
        result.append(line)
        prev = norm
    return "\n".join(result)


def _dedupe_global_lines(text: str, protocol: ProtocolConfig) -> str:
    seen: set[str] = set()
    marker_kept = False
    result: list[str] = []
    for line in text.split("\n"):
        norm = _norm(line)
        if not norm:
            result.append(line)
            continue
        if norm.startswith(protocol.download_link_marker):
            if marker_kept:
                continue
            marker_kept = True
            result.append(line)
            continue
        # stray escape artifacts
        if norm in ("/", "\\"):
            continue
        if len(norm) >= protocol.global_dup_min_length:
            if norm in seen:
                continue
            seen.add(norm)
        result.append(line)
    return "\n".join(result)


def _dedupe_once(text: str, protocol: ProtocolConfig) -> str:
    text = _dedupe_paragraphs(text)
    text = _dedupe_adjacent_lines(text, protocol.adjacent_dup_min_length)
    text = _dedupe_global_lines(text, protocol)
    return _BLANK_RUN.sub("\n\n", text).strip()


def deduplicate_text(text: str | None, protocol: ProtocolConfig = DEFAULT_PROTOCOL) -> str:
    """Remove repeated paragraphs, echoed adjacent lines and repeated long lines.

    Only deletes; surviving content keeps its order. A deletion can expose a
    new duplicate (two paragraphs becoming equal, two lines becoming
    adjacent), so the passes repeat until the text is stable.
    """
    text = (text or "").strip()
    while True:
        deduped = _dedupe_once(text, protocol)
        if deduped == text:
            return deduped
        text = deduped


def remove_duplicate_content(text: str | None, protocol: ProtocolConfig = DEFAULT_PROTOCOL) -> str:
    """Normalize, then deduplicate."""
    return deduplicate_text(normalize_text(text, protocol), protocol)


def _extract_link(value: str) -> str:
    match = _URL.search(value)
    if not match:
        return ""
    return match.group(0).rstrip("/\\")


def split_structured_content(
    text: str | None,
    protocol: ProtocolConfig = DEFAULT_PROTOCOL,
    logger: logging.Logger | None = None,
) -> StructuredReport:
    """Separate the download link line from the narrative body.

    Accepts raw or already cleaned text. Only the first marker line is
    consumed; later marker lines in the body are handled by the
    deduplicator. Text before the marker line is dropped.
    """
    content = normalize_text(text, protocol)
    marker = protocol.download_link_marker
    match = re.search(r"^[ \t]*" + re.escape(marker), content, re.MULTILINE)
    if match is None:
        if logger:
            logger.debug("No download link marker found, %d chars of content", len(content))
        return StructuredReport(download_link="", analysis_content=deduplicate_text(content, protocol))

    lines = content[match.start():].split("\n")
    link_line = lines[0].strip()
    download_link = _extract_link(link_line[len(marker):].strip())
    body = "\n".join(lines[1:]).strip()

    # The consumed marker line goes first so its repeats in the body count
    # as duplicates, then it is cut off again.
    deduped = deduplicate_text(link_line + "\n\n" + body, protocol)
    analysis_content = deduped.split("\n", 1)[1].strip() if "\n" in deduped else ""

    if logger:
        logger.debug("Extracted download link (%d chars), body %d chars", len(download_link), len(analysis_content))
    return StructuredReport(download_link=download_link, analysis_content=analysis_content)
