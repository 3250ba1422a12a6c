"""Role-based access control for insight engine operations.

Permissions are a static capability table keyed by (role, resource). Anything
not listed is denied, including unknown roles, resources and operations.
"""

from enum import Enum
from typing import Dict, FrozenSet, List, Tuple, Union

from erpinsight.errors import PermissionDenied
from erpinsight.models.user import Role


class Resource(str, Enum):
    """Protected resources."""
    AI_CHAT = "ai_chat"
    AI_INSIGHTS = "ai_insights"
    AI_ALERTS = "ai_alerts"
    AI_ACTION = "ai_action"
    AI_CONFIG = "ai_config"
    AI_CONTEXT = "ai_context"
    AI_EVENTS = "ai_events"
    FEATURE_FLAG = "feature_flag"
    NOTIFICATION_CONFIG = "notification_config"
    METRICS = "metrics"


class Operation(str, Enum):
    """Operations on a resource."""
    READ = "read"
    LIST = "list"
    DISMISS = "dismiss"
    RESOLVE = "resolve"
    RUN = "run"
    APPROVE = "approve"
    REJECT = "reject"
    EXECUTE = "execute"
    VIEW = "view"
    EDIT = "edit"
    SEND = "send"
    PRODUCTION = "production"
    FINANCIAL = "financial"
    HR = "hr"
    FULL = "full"
    EMIT = "emit"


ALL_ROLES = (Role.ADMIN, Role.CEO, Role.MANAGER, Role.OPERATOR, Role.USER)
EXECUTIVES = (Role.ADMIN, Role.CEO)
MANAGEMENT = (Role.ADMIN, Role.CEO, Role.MANAGER)
STAFF = (Role.ADMIN, Role.CEO, Role.MANAGER, Role.OPERATOR)

# (operation, resource, roles allowed)
_GRANTS: List[Tuple[Operation, Resource, Tuple[Role, ...]]] = [
    # Chat
    (Operation.SEND, Resource.AI_CHAT, ALL_ROLES),
    (Operation.READ, Resource.AI_CHAT, ALL_ROLES),

    # Insights
    (Operation.LIST, Resource.AI_INSIGHTS, STAFF),
    (Operation.READ, Resource.AI_INSIGHTS, STAFF),
    (Operation.DISMISS, Resource.AI_INSIGHTS, MANAGEMENT),
    (Operation.RESOLVE, Resource.AI_INSIGHTS, MANAGEMENT),
    (Operation.RUN, Resource.AI_INSIGHTS, MANAGEMENT),

    # Alerts
    (Operation.LIST, Resource.AI_ALERTS, STAFF),
    (Operation.DISMISS, Resource.AI_ALERTS, MANAGEMENT),

    # Actions
    (Operation.LIST, Resource.AI_ACTION, MANAGEMENT),
    (Operation.READ, Resource.AI_ACTION, MANAGEMENT),
    (Operation.APPROVE, Resource.AI_ACTION, EXECUTIVES),
    (Operation.REJECT, Resource.AI_ACTION, MANAGEMENT),
    (Operation.EXECUTE, Resource.AI_ACTION, EXECUTIVES),

    # Configuration
    (Operation.VIEW, Resource.AI_CONFIG, EXECUTIVES),
    (Operation.EDIT, Resource.AI_CONFIG, EXECUTIVES),
    (Operation.VIEW, Resource.FEATURE_FLAG, EXECUTIVES),
    (Operation.EDIT, Resource.FEATURE_FLAG, EXECUTIVES),
    (Operation.VIEW, Resource.NOTIFICATION_CONFIG, EXECUTIVES),
    (Operation.EDIT, Resource.NOTIFICATION_CONFIG, EXECUTIVES),
    (Operation.VIEW, Resource.METRICS, EXECUTIVES),

    # Context (system data exposed to the assistant)
    (Operation.PRODUCTION, Resource.AI_CONTEXT, STAFF),
    (Operation.FINANCIAL, Resource.AI_CONTEXT, MANAGEMENT),
    (Operation.HR, Resource.AI_CONTEXT, EXECUTIVES),
    (Operation.FULL, Resource.AI_CONTEXT, EXECUTIVES),

    # Events
    (Operation.EMIT, Resource.AI_EVENTS, ALL_ROLES),
    (Operation.LIST, Resource.AI_EVENTS, MANAGEMENT),
]


def _build_capabilities() -> Dict[Tuple[Role, Resource], FrozenSet[Operation]]:
    table: Dict[Tuple[Role, Resource], set] = {}
    for operation, resource, roles in _GRANTS:
        for role in roles:
            table.setdefault((role, resource), set()).add(operation)
    return {key: frozenset(ops) for key, ops in table.items()}


CAPABILITIES: Dict[Tuple[Role, Resource], FrozenSet[Operation]] = _build_capabilities()


def _coerce(value, enum_class):
    if isinstance(value, enum_class):
        return value
    try:
        return enum_class(value)
    except ValueError:
        return None


def has_permission(role: Union[Role, str], resource: Union[Resource, str],
                   operation: Union[Operation, str]) -> bool:
    """Pure lookup in the capability table; unknown inputs are denied."""
    role_enum = _coerce(role, Role)
    resource_enum = _coerce(resource, Resource)
    operation_enum = _coerce(operation, Operation)
    if role_enum is None or resource_enum is None or operation_enum is None:
        return False
    return operation_enum in CAPABILITIES.get((role_enum, resource_enum), frozenset())


def get_role_permissions(role: Union[Role, str]) -> List[str]:
    """List `resource.operation` strings granted to a role."""
    role_enum = _coerce(role, Role)
    if role_enum is None:
        return []
    permissions = []
    for (granted_role, resource), operations in CAPABILITIES.items():
        if granted_role != role_enum:
            continue
        permissions.extend(f"{resource.value}.{op.value}" for op in operations)
    return sorted(permissions)


def check_permission(role: Union[Role, str], resource: Union[Resource, str],
                     operation: Union[Operation, str]) -> None:
    """Raise PermissionDenied unless the role holds the capability."""
    if not has_permission(role, resource, operation):
        raise PermissionDenied(
            resource=getattr(resource, "value", str(resource)),
            operation=getattr(operation, "value", str(operation)),
        )
