"""Middleware responsible for wiring tenant context into each request."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from uuid import UUID

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from .tenant_context import reset_tenant_context, set_tenant_context

__all__ = ["TenantContextMiddleware"]

logger = logging.getLogger(__name__)

TENANT_HEADER = "X-Tenant-Id"


class TenantContextMiddleware(BaseHTTPMiddleware):
    """Populate request state and the tenant context from the tenant header.

    Operator identity never comes from a header; authenticated routes take it
    from the bearer token (see :func:`app.core.auth.require_role`).

    Requests without a tenant header pass through untouched so that health and
    metrics endpoints keep working; routers that need a tenant reject those
    requests themselves.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:  # type: ignore[override]
        raw_tenant = request.headers.get(TENANT_HEADER) or request.query_params.get(
            "tenant_id"
        )
        if not raw_tenant:
            return await call_next(request)

        try:
            tenant_id = str(UUID(raw_tenant.strip()))
        except ValueError:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"detail": "Invalid tenant identifier."},
            )

        request.state.tenant_id = tenant_id

        token = set_tenant_context(tenant_id)
        try:
            return await call_next(request)
        finally:
            reset_tenant_context(token)
