from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Union

from pydantic import Field, ValidationError, field_validator

from dhool_access.utils.logger import Logger
from .abac.models import AccessModel, FieldAccess

logger = Logger(__name__)


class CrudAction(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


# ── Map action names used by callers to CRUD actions ─────────────
ACTION_ALIASES: Dict[str, CrudAction] = {
    "create": CrudAction.CREATE,
    "read": CrudAction.READ,
    "view": CrudAction.READ,
    "edit": CrudAction.UPDATE,
    "update": CrudAction.UPDATE,
    "delete": CrudAction.DELETE,
    "remove": CrudAction.DELETE,
}


def resolve_crud_action(action) -> Optional[CrudAction]:
    """Map an action name (or CrudAction) to a CRUD action; None when unrecognised"""
    if isinstance(action, CrudAction):
        return action
    if not isinstance(action, str):
        return None
    return ACTION_ALIASES.get(action.lower())


class DataScope(str, Enum):
    OWN = "own"
    TEAM = "team"
    DEPARTMENT = "department"
    ALL = "all"


SCOPE_LEVELS: Dict[DataScope, int] = {
    DataScope.OWN: 1,
    DataScope.TEAM: 2,
    DataScope.DEPARTMENT: 3,
    DataScope.ALL: 4,
}


def scope_level(scope) -> int:
    """Numeric breadth of a scope; anything unrecognised counts as own"""
    try:
        return SCOPE_LEVELS[DataScope(scope)]
    except ValueError:
        return SCOPE_LEVELS[DataScope.OWN]


def normalize_scope(value):
    """Coerce a scope value; unknown strings become own with a warning"""
    if value is None or isinstance(value, DataScope):
        return value
    try:
        return DataScope(value)
    except ValueError:
        logger.warning(f"Unknown scope {value!r}; using 'own'")
        return DataScope.OWN


def widest_scope(*scopes) -> DataScope:
    best = DataScope.OWN
    for scope in scopes:
        if scope_level(scope) > scope_level(best):
            best = DataScope(scope)
    return best


class PlanTier(str, Enum):
    FREE = "free"
    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


TIER_LEVELS: Dict[PlanTier, int] = {
    PlanTier.FREE: 1,
    PlanTier.STARTER: 2,
    PlanTier.PROFESSIONAL: 3,
    PlanTier.ENTERPRISE: 4,
}


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


# ================== REGISTRY PAYLOADS ==================


class Permission(AccessModel):
    """CRUD grant for one document type inside a role"""

    action: CrudAction
    allowed: bool = False
    scope: Optional[DataScope] = None
    conditions: Optional[Dict[str, Any]] = None
    priority: int = 0
    source: Optional[str] = None

    @field_validator("scope", mode="before")
    @classmethod
    def _normalize_scope(cls, value):
        return normalize_scope(value)

    @field_validator("priority", mode="before")
    @classmethod
    def _default_priority(cls, value):
        return 0 if value is None else value

    def effective_scope(self, default: Optional[DataScope] = None) -> DataScope:
        return self.scope or default or DataScope.OWN


class UserRole(AccessModel):
    id: str = Field(..., min_length=1)
    name: str
    description: Optional[str] = None
    module: Optional[str] = None
    level: Optional[int] = None
    system: bool = False
    permissions: Dict[str, List[Permission]] = Field(default_factory=dict)
    default_scope: Optional[DataScope] = None
    inherits: List[str] = Field(default_factory=list)

    @field_validator("default_scope", mode="before")
    @classmethod
    def _normalize_default_scope(cls, value):
        return normalize_scope(value)

    @field_validator("permissions", mode="before")
    @classmethod
    def _drop_malformed_permissions(cls, value):
        # A dropped entry can only remove a grant, never add one
        if not isinstance(value, dict):
            return value
        cleaned = {}
        for doc_type, entries in value.items():
            kept = []
            for entry in entries or []:
                try:
                    kept.append(
                        entry if isinstance(entry, Permission) else Permission.model_validate(entry)
                    )
                except ValidationError as exc:
                    logger.warning(
                        f"Skipping malformed permission on {doc_type!r}: {exc.errors()[0]['msg']}"
                    )
            cleaned[doc_type] = kept
        return cleaned

    def permissions_for(self, doc_type: str) -> List[Permission]:
        return self.permissions.get(doc_type, [])


class PlanPricing(AccessModel):
    monthly: Optional[float] = None
    annual: Optional[float] = None
    currency: Optional[str] = None


class SubscriptionPlan(AccessModel):
    id: str = Field(..., min_length=1)
    name: str
    description: Optional[str] = None
    tier: PlanTier = PlanTier.FREE
    modules: FrozenSet[str] = Field(default_factory=frozenset)
    features: FrozenSet[str] = Field(default_factory=frozenset)
    limits: Dict[str, Optional[float]] = Field(default_factory=dict)
    pricing: Optional[PlanPricing] = None
    active: bool = True

    @property
    def tier_level(self) -> int:
        return TIER_LEVELS[self.tier]


class ModuleRequirements(AccessModel):
    min_tier: Optional[PlanTier] = None
    features: List[str] = Field(default_factory=list)


class ModuleAccess(AccessModel):
    module_id: str = Field(..., min_length=1)
    name: str = ""
    available: bool = True
    features: Dict[str, bool] = Field(default_factory=dict)
    limits: Optional[Dict[str, float]] = None
    requirements: Optional[ModuleRequirements] = None


# ================== REQUEST CONTEXT ==================


class SubscriptionState(AccessModel):
    plan: Optional[SubscriptionPlan] = None
    plan_id: Optional[str] = None
    status: SubscriptionStatus = SubscriptionStatus.INACTIVE
    usage: Dict[str, float] = Field(default_factory=dict)
    expires_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status is SubscriptionStatus.ACTIVE

    @property
    def plan_ref(self) -> Optional[str]:
        if self.plan_id:
            return self.plan_id
        return self.plan.id if self.plan is not None else None


class ContextUser(AccessModel):
    id: str
    roles: List[str] = Field(default_factory=list)
    department: Optional[str] = None
    team: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)


class ContextDocument(AccessModel):
    id: Optional[str] = None
    type: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    owner: Optional[str] = None
    team: Optional[str] = None
    department: Optional[str] = None
    state: Optional[str] = None


class AccessContext(AccessModel):
    """Everything one decision needs; built per request and discarded afterwards"""

    user: ContextUser
    subscription: Optional[SubscriptionState] = None
    document: Optional[ContextDocument] = None
    field: Optional[str] = None
    # CRUD aliases resolve to CrudAction; other action names are kept as given
    action: Union[CrudAction, str] = CrudAction.READ
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[datetime] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None

    @field_validator("action", mode="before")
    @classmethod
    def _resolve_action(cls, value):
        if value is None:
            return CrudAction.READ
        return resolve_crud_action(value) or value


# ================== DECISIONS ==================


class PermissionResult(AccessModel):
    allowed: bool = False
    scope: DataScope = DataScope.OWN
    conditions: Optional[Dict[str, Any]] = None

    @classmethod
    def denied(cls) -> "PermissionResult":
        return cls()


class DocumentAccess(AccessModel):
    permissions: Dict[CrudAction, bool] = Field(
        default_factory=lambda: {action: False for action in CrudAction}
    )
    scope: DataScope = DataScope.OWN
    fields: Dict[str, FieldAccess] = Field(default_factory=dict)
    actions: List[str] = Field(default_factory=list)
    conditional: bool = False

    @classmethod
    def denied(cls) -> "DocumentAccess":
        return cls()
