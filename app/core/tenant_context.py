"""Runtime helpers for storing tenant-aware request context.

A :class:`contextvars.ContextVar` keeps track of the tenant (and, for
authenticated operator requests, the acting operator) during a request
lifecycle. ``TenantContextMiddleware`` populates the tenant from the request
header and resets it once the response has been produced;
:func:`app.core.auth.require_role` adds the operator named by the access
token. Repositories and services call ``get_current_tenant_id`` instead of
reaching for the HTTP request, and log records pick up both values.
"""

from __future__ import annotations

from contextvars import ContextVar, Token
from typing import TypedDict

__all__ = [
    "TenantRuntimeContext",
    "get_current_operator_id",
    "get_current_tenant_id",
    "reset_tenant_context",
    "set_tenant_context",
]


class TenantRuntimeContext(TypedDict):
    """Values stored in the tenant context during a request."""

    tenant_id: str
    operator_id: str | None


_tenant_context: ContextVar[TenantRuntimeContext | None] = ContextVar(
    "tenant_runtime_context", default=None
)


def set_tenant_context(
    tenant_id: str, operator_id: str | None = None
) -> Token[TenantRuntimeContext | None]:
    """Persist tenant metadata in the request-scoped context variable.

    Returns the ``Token`` that must be handed back to
    :func:`reset_tenant_context` once the request is finished.
    """

    return _tenant_context.set({"tenant_id": tenant_id, "operator_id": operator_id})


def reset_tenant_context(token: Token[TenantRuntimeContext | None]) -> None:
    """Restore the tenant context to the state prior to ``set_tenant_context``."""

    _tenant_context.reset(token)


def get_current_tenant_id() -> str | None:
    """Return the tenant identifier for the current execution context."""

    context = _tenant_context.get()
    if context is None:
        return None
    return context["tenant_id"]


def get_current_operator_id() -> str | None:
    context = _tenant_context.get()
    if context is None:
        return None
    return context["operator_id"]
