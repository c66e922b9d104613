"""
Dhool access control engine

Three-layer access evaluation for schema-driven ERP documents:
- Subscription gate (modules, features, usage limits)
- Role permission resolver (CRUD allow, data scope, record filter)
- ABAC field policies (readable/writable per field)

AccessService composes the layers over an AccessRegistry snapshot.
"""

from .abac import (
    ABACCondition, ABACPolicy, AccessMode, ConditionEvaluator, ConditionOperator,
    EffectiveWindow, FieldAccess, FieldAccessLevel, LogicOperator, PolicyEngine
)
from .audit import AccessAuditEntry, AccessAuditTrail, AuditResourceType, AuditResult
from .models import (
    AccessContext, ContextDocument, ContextUser, CrudAction, DataScope, DocumentAccess,
    ModuleAccess, ModuleRequirements, Permission, PermissionResult, PlanTier,
    SubscriptionPlan, SubscriptionState, SubscriptionStatus, UserRole, scope_level, widest_scope
)
from .permissions import PermissionResolver, record_in_scope, resolve_crud_action
from .registry import AccessConfig, AccessRegistry, RegistrySnapshot
from .service import AccessService
from .subscription import SubscriptionGate, tier_satisfies

__all__ = [
    # ABAC
    "ABACCondition", "ABACPolicy", "AccessMode", "ConditionEvaluator", "ConditionOperator",
    "EffectiveWindow", "FieldAccess", "FieldAccessLevel", "LogicOperator", "PolicyEngine",

    # Models
    "AccessContext", "ContextDocument", "ContextUser", "CrudAction", "DataScope", "DocumentAccess",
    "ModuleAccess", "ModuleRequirements", "Permission", "PermissionResult", "PlanTier",
    "SubscriptionPlan", "SubscriptionState", "SubscriptionStatus", "UserRole",
    "scope_level", "widest_scope",

    # Components
    "PermissionResolver", "record_in_scope", "resolve_crud_action",
    "SubscriptionGate", "tier_satisfies",
    "AccessConfig", "AccessRegistry", "RegistrySnapshot",
    "AccessAuditEntry", "AccessAuditTrail", "AuditResourceType", "AuditResult",

    # Facade
    "AccessService",
]
