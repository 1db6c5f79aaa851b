"""Response body normalization and truncation."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from unbrowse.execution.types import ExecutionResult

logger = logging.getLogger(__name__)

# Maximum serialized body length returned to callers
MAX_RESPONSE_CHARS = 30_000


@dataclass
class TruncationResult:
    """Result of truncation operation."""

    content: str
    truncated: bool
    original_length: int = 0
    output_length: int = 0


def truncation_marker(original_length: int, shown: int) -> str:
    return (
        f"\n\n[... Response truncated. Original length: {original_length} characters, "
        f"showing first {shown} characters]"
    )


def normalize_body(body: Any) -> Any:
    """Coerce a body into JSON-compatible values.

    Bytes are decoded as UTF-8 (with replacement); anything else that JSON
    cannot represent is stringified.
    """
    if body is None or isinstance(body, str | bool | int | float):
        return body
    if isinstance(body, bytes | bytearray):
        return bytes(body).decode("utf-8", errors="replace")
    if isinstance(body, dict):
        return {str(key): normalize_body(value) for key, value in body.items()}
    if isinstance(body, list | tuple | set | frozenset):
        return [normalize_body(item) for item in body]
    return str(body)


def serialize_body(body: Any) -> str:
    if isinstance(body, str):
        return body
    return json.dumps(body, ensure_ascii=False)


def truncate_body(text: str, max_chars: int = MAX_RESPONSE_CHARS) -> TruncationResult:
    """Cut text to ``max_chars`` and append the length-disclosure marker.

    The result is never longer than ``max_chars`` plus the marker itself.
    """
    total = len(text)
    if total <= max_chars:
        return TruncationResult(
            content=text, truncated=False, original_length=total, output_length=total
        )
    return TruncationResult(
        content=text[:max_chars] + truncation_marker(total, max_chars),
        truncated=True,
        original_length=total,
        output_length=max_chars,
    )


class ResponseShaper:
    """Final, always-run stage: normalize, bound, and stamp the result."""

    def __init__(self, *, max_chars: int = MAX_RESPONSE_CHARS) -> None:
        self._max_chars = max_chars

    def shape(self, result: ExecutionResult, *, started: float) -> ExecutionResult:
        """Shape ``result`` in place.

        Args:
            result: Envelope produced by the earlier stages.
            started: ``time.monotonic()`` reading taken when execution began.
        """
        body = normalize_body(result.body)
        if body is not None:
            truncation = truncate_body(serialize_body(body), self._max_chars)
            if truncation.truncated:
                logger.warning(
                    "response_truncated",
                    extra={
                        "response.original_length": truncation.original_length,
                        "response.output_length": truncation.output_length,
                    },
                )
                body = truncation.content
                result.truncated = True
        result.body = body
        result.executed_at = datetime.now(UTC)
        result.execution_time_ms = int((time.monotonic() - started) * 1000)
        return result
