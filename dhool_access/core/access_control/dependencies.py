"""
FastAPI dependencies that gate endpoints through the access service.

The service is read from ``app.state.access_service`` and the per-request
context from ``request.state.access_context`` (set by the auth layer).

Usage:
    @router.put("/invoices/{invoice_id}")
    async def update_invoice(
        invoice_id: str,
        permission: PermissionResult = Depends(require_permission("invoice", "update")),
    ):
        ...
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from pydantic import ValidationError

from dhool_access.utils.exceptions import (
    AccessContextError,
    AccessDeniedError,
    ModuleAccessError,
)
from .models import AccessContext, PermissionResult
from .service import AccessService


async def get_access_service(request: Request) -> AccessService:
    """FastAPI dependency to get the access service configured on the app"""
    service = getattr(request.app.state, "access_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Access service not available - set app.state.access_service at startup",
        )
    return service


async def get_access_context(request: Request) -> AccessContext:
    """FastAPI dependency to get the access context from request state"""
    context = getattr(request.state, "access_context", None)
    if context is None:
        raise AccessContextError()
    if isinstance(context, AccessContext):
        return context
    try:
        return AccessContext.model_validate(context)
    except ValidationError:
        raise AccessContextError("Access context on request state is malformed")


def require_permission(doc_type: str, action: str):
    """Dependency factory: 403 unless the context may perform action on doc_type"""

    async def dependency(
        service: AccessService = Depends(get_access_service),
        context: AccessContext = Depends(get_access_context),
    ) -> PermissionResult:
        result = service.check_permission(context, doc_type, action)
        if not result.allowed:
            raise AccessDeniedError(f"Permission denied. Requires: {doc_type}:{action}")
        return result

    return dependency


def require_module(module_id: str, feature: Optional[str] = None):
    """Dependency factory: 403 unless the subscription and module config open module_id"""

    async def dependency(
        service: AccessService = Depends(get_access_service),
        context: AccessContext = Depends(get_access_context),
    ) -> bool:
        if feature is None:
            granted = service.has_module_access(context, module_id)
        else:
            granted = service.has_feature_access(context, module_id, feature)
        if not granted:
            target = f"{module_id}:{feature}" if feature else module_id
            raise ModuleAccessError(f"Subscription does not include: {target}")
        return True

    return dependency
