"""Ability execution routes.

User identity is established by upstream authentication middleware, which
sets ``request.state.user_id``. The ``X-User-Id`` header is honored only
when the app is created with ``trust_user_header``. The decryption secret
may be supplied per request with ``X-Credential-Key``.
"""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from unbrowse.execution import (
    AbilityExecutionEngine,
    ErrorKind,
    ExecutionRequest,
    ExecutionResult,
)

router = APIRouter()
logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 50

_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION_ERROR: 422,
}


class ExecuteBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    params: dict[str, Any] = Field(default_factory=dict)
    transform_code: str | None = Field(default=None, alias="transformCode")


class BatchItem(ExecuteBody):
    ability_id: str = Field(alias="abilityId", min_length=1)


class BatchBody(BaseModel):
    executions: list[BatchItem] = Field(min_length=1, max_length=MAX_BATCH_SIZE)


def _engine(request: Request) -> AbilityExecutionEngine:
    return request.app.state.engine


def _user_id(request: Request, header_value: str | None) -> str:
    user_id = getattr(request.state, "user_id", None)
    if not user_id and request.app.state.trust_user_header:
        user_id = header_value
    if not user_id or not str(user_id).strip():
        raise HTTPException(status_code=401, detail="user identity required")
    return str(user_id).strip()


def _status_for(result: ExecutionResult) -> int:
    if result.error_kind is None:
        return 200
    return _STATUS_BY_KIND.get(result.error_kind, 200)


@router.post("/abilities/{ability_id}/execute")
async def execute_ability(
    ability_id: str,
    body: ExecuteBody,
    request: Request,
    x_user_id: Annotated[str | None, Header()] = None,
    x_credential_key: Annotated[str | None, Header()] = None,
) -> JSONResponse:
    """Execute one ability and return the result envelope."""
    result = await _engine(request).execute(
        ExecutionRequest(
            ability_id=ability_id,
            user_id=_user_id(request, x_user_id),
            params=body.params,
            transform_code=body.transform_code,
        ),
        credential_key=x_credential_key,
    )
    return JSONResponse(result.to_dict(), status_code=_status_for(result))


@router.post("/abilities/execute-batch")
async def execute_batch(
    body: BatchBody,
    request: Request,
    x_user_id: Annotated[str | None, Header()] = None,
    x_credential_key: Annotated[str | None, Header()] = None,
) -> dict[str, Any]:
    """Execute independent abilities concurrently.

    Results are returned in request order; one failure never affects the
    others.
    """
    user_id = _user_id(request, x_user_id)
    results = await _engine(request).execute_many(
        [
            ExecutionRequest(
                ability_id=item.ability_id,
                user_id=user_id,
                params=item.params,
                transform_code=item.transform_code,
            )
            for item in body.executions
        ],
        credential_key=x_credential_key,
    )
    return {
        "results": [
            {"abilityId": item.ability_id, **result.to_dict()}
            for item, result in zip(body.executions, results, strict=True)
        ]
    }
