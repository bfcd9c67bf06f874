"""SSE body decoding for the chat service's streamed answers.

The structured result can sit at different depths depending on which
delivery path the service used, so extraction happens in ordered attempts:
a nested JSON string holding the structured field, the structured field on
the event itself, and finally a pattern scan over the text
(`extract_output_candidates`) for payloads that were escaped once too often.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from .config import ProtocolConfig

DEFAULT_PROTOCOL = ProtocolConfig()

_UNESCAPE_ROUNDS = 3


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


class SSEPayloadDecoder:
    """Consumes SSE lines and keeps the first structured payload.

    Lines can be fed one at a time, so the same rules apply to a body that is
    already complete and to a live stream: stop at the first structured
    match, otherwise keep concatenating running text until the end.
    """

    def __init__(self, protocol: ProtocolConfig = DEFAULT_PROTOCOL, logger: logging.Logger | None = None) -> None:
        self.protocol = protocol
        self.logger = logger
        self.structured: str | None = None
        self._parts: list[str] = []
        self.data_lines = 0

    @property
    def done(self) -> bool:
        return self.structured is not None

    def _log(self, msg: str, *args: Any) -> None:
        if self.logger:
            self.logger.debug(msg, *args)

    def feed_line(self, line: str) -> bool:
        """Process one raw line. Returns True once a structured payload is found."""
        if self.done:
            return True
        protocol = self.protocol
        if not line.startswith(protocol.data_prefix):
            return False
        data = line[len(protocol.data_prefix):].strip()
        if not data or data == protocol.done_sentinel:
            return False
        self.data_lines += 1

        try:
            event = json.loads(data)
        except ValueError:
            self._log("data line %d is not JSON (%d chars)", self.data_lines, len(data))
            if not data.startswith(("{", "[")):
                self._parts.append(data)
            return False

        if not isinstance(event, dict):
            return False

        nested = event.get(protocol.nested_field)
        if isinstance(nested, str) and protocol.structured_field in nested:
            try:
                inner = json.loads(nested)
            except ValueError:
                inner = None
            if isinstance(inner, dict) and protocol.structured_field in inner:
                self.structured = _as_text(inner[protocol.structured_field])
                self._log("structured payload found in nested field of data line %d", self.data_lines)
                return True

        if protocol.structured_field in event:
            self.structured = _as_text(event[protocol.structured_field])
            self._log("structured payload found on data line %d", self.data_lines)
            return True

        text = event.get(protocol.text_field)
        if isinstance(text, str):
            self._parts.append(text)
        return False

    def result(self) -> str:
        """The structured payload if one was found, else the running text."""
        if self.structured is not None:
            return self.structured
        return "".join(self._parts)


def decode_sse_payload(
    body: str | None,
    protocol: ProtocolConfig = DEFAULT_PROTOCOL,
    logger: logging.Logger | None = None,
) -> str:
    """Return the first structured field in the body, else the running text."""
    decoder = SSEPayloadDecoder(protocol, logger)
    for line in (body or "").split("\n"):
        if decoder.feed_line(line.rstrip("\r")):
            break
    if logger:
        logger.debug(
            "decoded %d data lines, structured=%s, %d chars",
            decoder.data_lines,
            decoder.done,
            len(decoder.result()),
        )
    return decoder.result()


def _candidate_pattern(field: str) -> re.Pattern:
    name = re.escape(field)
    escaped = (
        r'\\"' + name + r'\\"\s*:\s*\\"'
        r'((?:\\\\\\\\|\\\\\\"|\\\\[^\\"]|[^\\])*)'
        r'\\"'
    )
    plain = r'"' + name + r'"\s*:\s*"((?:[^"\\]|\\.)*)"'
    return re.compile(escaped + "|" + plain, re.DOTALL)


def unescape_candidate(value: str) -> str:
    """Resolve escaped newlines and quotes, up to three levels deep."""
    for _ in range(_UNESCAPE_ROUNDS):
        unescaped = value.replace("\\n", "\n").replace('\\"', '"')
        if unescaped == value:
            break
        value = unescaped
    return value


def extract_output_candidates(
    text: str | None,
    protocol: ProtocolConfig = DEFAULT_PROTOCOL,
    logger: logging.Logger | None = None,
) -> list[str]:
    """Find structured field values embedded as escaped or plain JSON text.

    Matches are returned in order of appearance. Failures yield no candidates.
    """
    if not text:
        return []
    try:
        pattern = _candidate_pattern(protocol.structured_field)
        candidates = []
        for match in pattern.finditer(text):
            value = match.group(1) if match.group(1) is not None else match.group(2)
            candidates.append(unescape_candidate(value))
    except Exception as e:
        if logger:
            logger.warning("fallback extraction failed: %s", e)
        return []
    return candidates
