"""Single entry point for authorization checks."""

import logging
from typing import Any, Dict, List, Optional, Union

from erpinsight.errors import PermissionDenied, RateLimited
from erpinsight.models.audit import AuditLogEntry
from erpinsight.models.user import Principal
from erpinsight.security.rbac import Operation, Resource, has_permission
from erpinsight.security.feature_flags import FeatureFlagRegistry
from erpinsight.security.rate_limit import RateLimiter
from erpinsight.security.audit import AuditLogger
from erpinsight.security.checklist import SecurityCheckResult, run_security_checklist

logger = logging.getLogger(__name__)


def _value(item: Union[str, Any]) -> str:
    return getattr(item, "value", str(item))


class SecurityGate:
    """Composes RBAC, feature flags, rate limiting and audit logging.

    `authorize` checks permission, then the feature flag, then the rate limit.
    Each denial is audited before the error is raised.
    """

    def __init__(self, flags: FeatureFlagRegistry, rate_limiter: RateLimiter,
                 audit: Optional[AuditLogger] = None):
        self.flags = flags
        self.rate_limiter = rate_limiter
        self.audit = audit

    def record(self, principal: Principal, resource: Union[Resource, str], operation: Union[Operation, str],
               success: bool = True, resource_id: Optional[Any] = None,
               details: Optional[Dict[str, Any]] = None, error_message: Optional[str] = None) -> bool:
        """Write an audit entry; returns False if the audit store failed."""
        if self.audit is None:
            return True
        return self.audit.log_audit(AuditLogEntry(
            user_id=principal.user_id,
            user_role=principal.role,
            action=_value(operation),
            resource=_value(resource),
            resource_id=str(resource_id) if resource_id is not None else None,
            details=details or {},
            success=success,
            error_message=error_message,
        ))

    def authorize(self, principal: Principal, resource: Union[Resource, str],
                  operation: Union[Operation, str], rate_key: Optional[str] = None,
                  feature: Optional[str] = None, resource_id: Optional[Any] = None) -> None:
        if not has_permission(principal.role, resource, operation):
            logger.info(f"Denied {_value(resource)}.{_value(operation)} for {principal.user_id} ({principal.role})")
            self.record(principal, resource, operation, success=False, resource_id=resource_id,
                        error_message="permission denied")
            raise PermissionDenied(resource=_value(resource), operation=_value(operation))

        if feature and not self.flags.is_feature_enabled(feature, principal.user_id, principal.role):
            logger.info(f"Feature {feature} disabled for {principal.user_id} ({principal.role})")
            self.record(principal, resource, operation, success=False, resource_id=resource_id,
                        error_message=f"feature {feature} disabled")
            raise PermissionDenied(resource=_value(resource), operation=_value(operation))

        if rate_key:
            try:
                self.rate_limiter.enforce_rate_limit(principal.user_id, rate_key)
            except RateLimited as e:
                self.record(principal, resource, operation, success=False, resource_id=resource_id,
                            error_message=f"rate limited ({rate_key})", details={"retry_after": e.retry_after_seconds})
                raise

    def is_allowed(self, principal: Principal, resource: Union[Resource, str],
                   operation: Union[Operation, str]) -> bool:
        return has_permission(principal.role, resource, operation)

    def run_checklist(self) -> List[SecurityCheckResult]:
        return run_security_checklist(self.flags, self.rate_limiter, self.audit)
