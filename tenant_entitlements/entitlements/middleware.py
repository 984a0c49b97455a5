"""
Entitlement check dependencies for FastAPI routes.

Usage:
    from tenant_entitlements.entitlements.middleware import require_feature

    @router.post("/api/exports")
    async def create_export(
        entitlement=Depends(require_feature(Feature.EXPORT)),
    ):
        ...

The engine is taken from app.state.entitlement_engine. Tenant and actor
come from request.state (tenant_id / user_id), or from a tenant_context
object carrying those attributes when an auth middleware sets one.
"""

import logging
from typing import Callable, Optional, Tuple, Union

from fastapi import HTTPException, Request, status

from tenant_entitlements.entitlements.errors import EntitlementDeniedError
from tenant_entitlements.entitlements.models import EntitlementCheckResult, Feature
from tenant_entitlements.entitlements.service import EntitlementEngine
from tenant_entitlements.platform.audit import record_blocked_access

logger = logging.getLogger(__name__)


def get_entitlement_engine(request: Request) -> EntitlementEngine:
    engine = getattr(request.app.state, "entitlement_engine", None)
    if engine is None:
        logger.error("Entitlement engine not configured", extra={"path": request.url.path})
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Entitlement service not available",
        )
    return engine


def _request_identity(request: Request) -> Tuple[Optional[str], Optional[str]]:
    ctx = getattr(request.state, "tenant_context", None)
    if ctx is not None:
        return getattr(ctx, "tenant_id", None), getattr(ctx, "user_id", None)
    return getattr(request.state, "tenant_id", None), getattr(request.state, "user_id", None)


def require_feature(feature: Union[str, Feature], audit_blocked: bool = True) -> Callable:
    """
    Factory for a dependency that gates a route on a feature entitlement.

    Raises 402 Payment Required with the serialized check result when the
    tenant is not entitled. Returns the EntitlementCheckResult otherwise.
    """
    feature_key = feature.value if isinstance(feature, Feature) else feature

    def check_entitlement(request: Request) -> EntitlementCheckResult:
        tenant_id, actor_id = _request_identity(request)
        tenant_id = tenant_id.strip() if isinstance(tenant_id, str) else tenant_id
        if not tenant_id:
            logger.error("Entitlement gate reached without tenant context", extra={
                "path": request.url.path,
                "feature": feature_key,
            })
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Tenant context not available",
            )

        engine = get_entitlement_engine(request)
        result = engine.check(
            tenant_id,
            feature_key,
            actor_id=actor_id,
            audit_metadata={"path": request.url.path, "method": request.method},
        )
        if result.enabled:
            return result

        denied = EntitlementDeniedError(result)
        logger.warning(
            "Feature access denied - not entitled",
            extra={
                "tenant_id": tenant_id,
                "feature": feature_key,
                "tier": result.tier.value,
                "reason": result.reason.value if result.reason else None,
            },
        )
        if audit_blocked:
            record_blocked_access(
                getattr(request.app.state, "audit_sink", None),
                tenant_id,
                actor_id,
                feature_key,
                reason=result.reason.value if result.reason else None,
                tier=result.tier.value,
                metadata={"path": request.url.path},
            )
        raise HTTPException(status_code=denied.http_status, detail=denied.to_dict())

    return check_entitlement
