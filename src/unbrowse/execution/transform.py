"""Caller-supplied post-processing of successful response bodies."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from unbrowse.execution.sandbox import SandboxError, ScriptRunner
from unbrowse.execution.types import ExecutionResult

logger = logging.getLogger(__name__)

TRANSFORM_ERROR_KEY = "_transform_error"
ORIGINAL_DATA_KEY = "_original_data"


def transform_error_body(message: str, original: Any) -> dict[str, Any]:
    return {TRANSFORM_ERROR_KEY: message, ORIGINAL_DATA_KEY: original}


class ResponseTransformer:
    """Run transform code in the network-less script sandbox.

    Transform code is either an expression evaluating to a callable, such as
    ``lambda data: data["items"][:5]``, or a module defining
    ``transform(data)``. Failures never fail the execution; the body is
    replaced with the error and the untouched original.
    """

    def __init__(self, runner: ScriptRunner, *, timeout_seconds: float = 5.0) -> None:
        self._runner = runner
        self._timeout_seconds = timeout_seconds

    async def apply(self, result: ExecutionResult, transform_code: str) -> ExecutionResult:
        if not result.success or not transform_code.strip():
            return result

        original = result.body
        try:
            async with asyncio.timeout(self._timeout_seconds):
                reply = await self._runner.run(
                    {"mode": "transform", "source": transform_code, "data": original}
                )
        except TimeoutError:
            message = f"Transform timed out after {self._timeout_seconds:g}s"
        except SandboxError as e:
            message = str(e)
        else:
            result.body = reply.get("value")
            result.transformed = True
            return result

        logger.info("transform_failed", extra={"error.message": message})
        result.body = transform_error_body(message, original)
        result.transformed = False
        return result
