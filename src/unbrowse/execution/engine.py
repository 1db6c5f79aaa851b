"""Ability execution engine.

Runs the full pipeline for one request:

    lookup -> dependency check -> parameter validation -> credential
    resolution -> sandbox -> failure recovery -> transform -> shaping

Every stage reports failure by returning a result; the engine never raises
for a failed execution.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence

import httpx

from unbrowse.abilities.catalog import AbilityCatalog
from unbrowse.abilities.schema import ParameterValidationError, validate_params
from unbrowse.config.models import ExecutionConfig
from unbrowse.credentials.resolver import CredentialResolution, CredentialResolver
from unbrowse.credentials.store import CredentialStore
from unbrowse.execution.headers import dynamic_layer, static_layer
from unbrowse.execution.recovery import FailureRecoveryCoordinator
from unbrowse.execution.sandbox import SandboxExecutor, SandboxLimits, ScriptRunner
from unbrowse.execution.shaper import ResponseShaper
from unbrowse.execution.transform import ResponseTransformer
from unbrowse.execution.types import ErrorKind, ExecutionRequest, ExecutionResult

logger = logging.getLogger(__name__)


class AbilityExecutionEngine:
    """Execute abilities on behalf of users.

    One engine owns one ``httpx.AsyncClient`` unless a client is injected;
    close it with ``aclose()`` or use the engine as an async context manager.
    """

    def __init__(
        self,
        catalog: AbilityCatalog,
        credential_store: CredentialStore,
        *,
        client: httpx.AsyncClient | None = None,
        config: ExecutionConfig | None = None,
        credential_key: str | None = None,
        runner: ScriptRunner | None = None,
    ) -> None:
        self._catalog = catalog
        self._store = credential_store
        self._config = config or ExecutionConfig()
        self._credential_key = credential_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self._config.timeout_seconds)
        self._semaphore = asyncio.Semaphore(self._config.max_concurrency)

        runner = runner or ScriptRunner(
            env_allowlist=self._config.env_allowlist,
            limits=SandboxLimits(
                memory_mb=self._config.sandbox_memory_mb,
                cpu_seconds=self._config.sandbox_cpu_seconds,
                max_processes=self._config.sandbox_max_processes,
            ),
        )
        self._sandbox = SandboxExecutor(
            self._client,
            runner=runner,
            timeout_seconds=self._config.timeout_seconds,
            max_calls=self._config.max_calls_per_execution,
        )
        self._recovery = FailureRecoveryCoordinator(
            catalog,
            credential_store,
            login_keywords=self._config.login_keywords,
        )
        self._transformer = ResponseTransformer(
            runner, timeout_seconds=self._config.transform_timeout_seconds
        )
        self._shaper = ResponseShaper(max_chars=self._config.max_response_chars)

    @property
    def config(self) -> ExecutionConfig:
        return self._config

    async def __aenter__(self) -> AbilityExecutionEngine:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def execute(
        self,
        request: ExecutionRequest,
        *,
        credential_key: str | None = None,
    ) -> ExecutionResult:
        """Execute one ability.

        Args:
            request: Ability, user, parameters, and optional transform code.
            credential_key: Secret used to decrypt the user's credentials.
                Falls back to the engine's configured key.

        Returns:
            The shaped result envelope. ``executed_at`` is always set.
        """
        started = time.monotonic()
        async with self._semaphore:
            try:
                result = await self._run(request, credential_key or self._credential_key)
            except Exception as e:
                logger.error(
                    "ability_execution_crashed",
                    extra={"ability.id": request.ability_id, "error.type": type(e).__name__},
                    exc_info=True,
                )
                result = ExecutionResult.failure(
                    ErrorKind.EXECUTION_FAULT, f"Unexpected execution error: {type(e).__name__}"
                )
        self._shaper.shape(result, started=started)

        logger.info(
            "ability_executed",
            extra={
                "ability.id": request.ability_id,
                "user.id": request.user_id,
                "execution.success": result.success,
                "execution.error_kind": str(result.error_kind) if result.error_kind else None,
                "execution.duration_ms": result.execution_time_ms,
                "http.status_code": result.status_code,
            },
        )
        return result

    async def execute_many(
        self,
        requests: Sequence[ExecutionRequest],
        *,
        credential_key: str | None = None,
    ) -> list[ExecutionResult]:
        """Execute independent requests concurrently; results keep request order."""
        return list(
            await asyncio.gather(
                *(self.execute(r, credential_key=credential_key) for r in requests)
            )
        )

    async def _run(
        self,
        request: ExecutionRequest,
        credential_key: str | None,
    ) -> ExecutionResult:
        try:
            ability = await self._catalog.get_ability(request.ability_id, request.user_id)
        except Exception as e:
            logger.error(
                "ability_lookup_failed",
                extra={"ability.id": request.ability_id, "error.message": str(e)},
                exc_info=True,
            )
            return ExecutionResult.failure(
                ErrorKind.EXECUTION_FAULT, "Failed to load ability definition"
            )
        if ability is None:
            return ExecutionResult.failure(
                ErrorKind.NOT_FOUND, f"Ability not found: {request.ability_id}"
            )

        if ability.missing_dependencies:
            return ExecutionResult.failure(
                ErrorKind.VALIDATION_ERROR,
                f"Missing dependencies: {', '.join(ability.missing_dependencies)}. "
                "Execute these abilities first.",
            )
        if ability.dependency_order:
            logger.debug(
                "ability_dependency_order",
                extra={
                    "ability.id": ability.ability_id,
                    "ability.dependency_order": list(ability.dependency_order),
                },
            )

        try:
            params = validate_params(ability.input_schema, request.params)
        except ParameterValidationError as e:
            return ExecutionResult.failure(ErrorKind.VALIDATION_ERROR, str(e))

        resolution: CredentialResolution | None = None
        if ability.requires_dynamic_headers:
            resolver = CredentialResolver(
                self._store,
                secret=credential_key,
                allow_plaintext=self._config.allow_plaintext_credentials,
            )
            try:
                resolution = await resolver.resolve(
                    user_id=request.user_id, keys=ability.dynamic_header_keys
                )
            except Exception as e:
                logger.error(
                    "credential_lookup_failed",
                    extra={"ability.id": ability.ability_id, "error.message": str(e)},
                    exc_info=True,
                )
                return ExecutionResult.failure(
                    ErrorKind.EXECUTION_FAULT, "Failed to load credentials"
                )
            if resolution.unresolved:
                return ExecutionResult.failure(
                    ErrorKind.MISSING_CREDENTIALS, resolution.describe_missing()
                )
            if resolution.undecryptable:
                return ExecutionResult.failure(
                    ErrorKind.DECRYPTION_FAILED, resolution.describe_undecryptable()
                )

        outcome = await self._sandbox.run(
            ability,
            params,
            layers=[
                static_layer(ability.static_headers, params),
                dynamic_layer(resolution),
            ],
        )
        result = await self._recovery.recover(ability, request.user_id, outcome)

        if request.transform_code and result.success:
            result = await self._transformer.apply(result, request.transform_code)
        return result
