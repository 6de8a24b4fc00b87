"""Tool invocation client: one envelope for every external capability call."""

import asyncio
from collections.abc import Mapping
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from researcher.config import Settings
from researcher.logging import get_logger
from researcher.models import ToolCallResult, ToolMode
from researcher.tools.mock import MockToolBackend
from researcher.tools.real import RealToolBackend
from researcher.tools.recordings import RecordedToolBackend
from researcher.tools.registry import DEFAULT_REGISTRY, CapabilitySpec

log = get_logger("researcher.tools.client")


class ToolBackend(Protocol):
    """Executes a capability operation; raises on failure.

    A backend that needs credentials may also define
    ``is_configured(capability) -> bool``; without it every capability counts
    as configured.
    """

    async def invoke(self, capability: str, operation: str, params: dict[str, Any]) -> dict[str, Any]: ...


class ToolClient:
    """Calls registered capabilities through one backend chosen at construction.

    ``call`` never raises: unregistered capabilities, unknown operations, backend
    errors and timeouts all come back as failed ``ToolCallResult`` envelopes.
    """

    def __init__(
        self,
        mode: ToolMode,
        backend: ToolBackend,
        *,
        registry: Mapping[str, CapabilitySpec] = DEFAULT_REGISTRY,
        timeout_s: float = 30.0,
    ) -> None:
        self._mode = mode
        self._backend = backend
        self._registry = registry
        self._timeout_s = timeout_s

    @property
    def mode(self) -> ToolMode:
        return self._mode

    def is_available(self, capability: str) -> bool:
        """Registered, and the backend has what it needs to call it."""
        if capability not in self._registry:
            return False
        is_configured = getattr(self._backend, "is_configured", None)
        return is_configured is None or is_configured(capability)

    def _failed(self, capability: str, operation: str, error: str) -> ToolCallResult:
        return ToolCallResult(
            success=False,
            error=error,
            capability=capability,
            operation=operation,
            mode=self._mode,
        )

    async def call(self, capability: str, operation: str, params: dict[str, Any] | None = None) -> ToolCallResult:
        spec = self._registry.get(capability)
        if spec is None:
            log.warning("tools.call.unavailable", capability=capability, operation=operation)
            return self._failed(capability, operation, f"Capability '{capability}' is not registered")
        if operation not in spec.operations:
            return self._failed(
                capability,
                operation,
                f"Capability '{capability}' has no operation '{operation}' "
                f"(available: {', '.join(sorted(spec.operations))})",
            )

        try:
            data = await asyncio.wait_for(
                self._backend.invoke(capability, operation, dict(params or {})),
                timeout=self._timeout_s,
            )
        except TimeoutError:
            log.warning("tools.call.timeout", capability=capability, operation=operation, timeout_s=self._timeout_s)
            return self._failed(capability, operation, f"Timed out after {self._timeout_s:g}s")
        except Exception as e:
            log.warning("tools.call.failed", capability=capability, operation=operation, error=str(e))
            return self._failed(capability, operation, str(e) or type(e).__name__)

        try:
            result = ToolCallResult(
                success=True,
                data=data,
                capability=capability,
                operation=operation,
                mode=self._mode,
            )
        except ValidationError as e:
            log.warning("tools.call.malformed", capability=capability, operation=operation, error=str(e))
            return self._failed(capability, operation, f"Malformed payload: expected an object, got {type(data).__name__}")

        log.debug("tools.call.succeeded", capability=capability, operation=operation, mode=self._mode.value)
        return result

    async def aclose(self) -> None:
        close = getattr(self._backend, "aclose", None)
        if close is not None:
            await close()


def create_tool_client(
    mode: ToolMode,
    settings: Settings,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> ToolClient:
    """Build a client for an explicit mode; the caller owning the run picks it."""
    backend: ToolBackend
    if mode is ToolMode.REAL:
        backend = RealToolBackend(settings, http_client=http_client)
    elif mode is ToolMode.TEST:
        backend = RecordedToolBackend()
    else:
        backend = MockToolBackend()

    log.info("tools.client.created", mode=mode.value)
    return ToolClient(mode, backend, timeout_s=settings.tool_timeout_s)
