"""Self-check of the security configuration."""

import logging
from typing import Dict, List, Optional

from pydantic import BaseModel

from erpinsight.models.user import Role
from erpinsight.security.rbac import CAPABILITIES, Operation, Resource, has_permission
from erpinsight.security.feature_flags import COPILOT_ENABLED, FeatureFlagRegistry
from erpinsight.security.rate_limit import RateLimiter
from erpinsight.security.redaction import redact_sensitive_data
from erpinsight.security.audit import AuditLogger

logger = logging.getLogger(__name__)

_REDACTION_SAMPLE = "cpf 123.456.789-09, cnpj 12.345.678/0001-90, email joao@example.com, (11) 98765-4321"


class SecurityCheckResult(BaseModel):
    check: str
    passed: bool
    details: str


def run_security_checklist(flags: FeatureFlagRegistry, rate_limiter: RateLimiter,
                           audit: Optional[AuditLogger] = None) -> List[SecurityCheckResult]:
    """Run every check; a check that errors is reported as failed."""
    results: List[SecurityCheckResult] = []

    results.append(SecurityCheckResult(
        check="rbac_configured",
        passed=len(CAPABILITIES) > 0,
        details=f"{sum(len(ops) for ops in CAPABILITIES.values())} capabilities across {len(CAPABILITIES)} role/resource pairs",
    ))

    fail_closed = (
        not has_permission("intruder", Resource.AI_INSIGHTS, Operation.LIST)
        and not has_permission(Role.ADMIN, "unknown_resource", Operation.READ)
        and not has_permission(Role.ADMIN, Resource.AI_INSIGHTS, "unknown_operation")
    )
    results.append(SecurityCheckResult(
        check="rbac_fail_closed",
        passed=fail_closed,
        details="Unknown roles, resources and operations are denied" if fail_closed
        else "An unknown role, resource or operation was granted",
    ))

    limits: Dict[str, int] = rate_limiter.limits
    results.append(SecurityCheckResult(
        check="rate_limits_configured",
        passed=bool(limits) and "default" in limits and all(v > 0 for v in limits.values()),
        details=", ".join(f"{name}={limit}/{rate_limiter.window_seconds}s" for name, limit in sorted(limits.items())),
    ))

    flag_list = flags.list_flags()
    results.append(SecurityCheckResult(
        check="feature_flags_configured",
        passed=len(flag_list) > 0,
        details=f"{len(flag_list)} flags: {', '.join(f.name for f in flag_list)}",
    ))

    redacted = redact_sensitive_data(_REDACTION_SAMPLE)
    redaction_ok = not any(ch.isdigit() for ch in redacted) and "@example.com" not in redacted
    results.append(SecurityCheckResult(
        check="redaction_operational",
        passed=redaction_ok,
        details="Documents, e-mail and phone numbers are masked" if redaction_ok
        else f"Sample leaked data: {redacted}",
    ))

    if audit is not None:
        try:
            reachable = audit.is_reachable()
            details = "Audit table reachable"
        except Exception as e:
            logger.error(f"Audit store check failed: {type(e).__name__}: {str(e)}")
            reachable = False
            details = f"Audit store unreachable: {type(e).__name__}"
        results.append(SecurityCheckResult(check="audit_store_reachable", passed=reachable, details=details))

    copilot = flags.get_flag(COPILOT_ENABLED)
    restricted = (
        copilot is not None
        and not copilot.enabled_globally
        and set(copilot.allowed_roles) <= {Role.ADMIN.value, Role.CEO.value}
    )
    results.append(SecurityCheckResult(
        check="copilot_restricted",
        passed=restricted,
        details=f"Allowed roles: {', '.join(copilot.allowed_roles) if copilot else 'flag missing'}",
    ))

    return results
