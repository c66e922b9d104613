"""
Access control facade.

Three layers, checked independently or together:
  1. Subscription - is the module/feature in an active plan with headroom
  2. Role permissions - CRUD allow and data scope per document type
  3. ABAC field policies - readable/writable per field

Every query reads one registry snapshot and returns a conservative
default (deny / own / empty) instead of raising.
"""

from functools import wraps
from typing import Any, Iterable, List, Optional

from pydantic import ValidationError

from dhool_access.core.config.access_settings import AccessSettings, get_settings
from dhool_access.utils.logger import Logger
from .abac.engine import ConditionEvaluator, PolicyEngine
from .abac.models import AccessMode, FieldAccess
from .audit import AccessAuditTrail, AuditResourceType
from .models import (
    AccessContext,
    CrudAction,
    DataScope,
    DocumentAccess,
    PermissionResult,
)
from .permissions import PermissionResolver, resolve_crud_action
from .registry import AccessRegistry, RegistrySnapshot
from .subscription import SubscriptionGate, tier_satisfies

logger = Logger(__name__)


def fail_closed(default_factory):
    """Return default_factory() when the decision cannot be computed"""

    def decorator(func):
        @wraps(func)
        def wrapper(self, context, *args, **kwargs):
            try:
                return func(self, self._as_context(context), *args, **kwargs)
            except ValidationError as e:
                logger.warning(f"{func.__name__}: invalid access context ({e.error_count()} error(s)); denying")
            except Exception:
                logger.exception(f"{func.__name__}: access evaluation failed; denying")
            return default_factory()

        return wrapper

    return decorator


class AccessService:
    """Composes the subscription gate, permission resolver and ABAC engine over one registry"""

    def __init__(
        self,
        registry: Optional[AccessRegistry] = None,
        settings: Optional[AccessSettings] = None,
        audit: Optional[AccessAuditTrail] = None,
    ):
        self.settings = settings or get_settings()
        self.registry = registry if registry is not None else AccessRegistry()
        if audit is None and self.settings.audit_enabled:
            audit = AccessAuditTrail(self.settings.audit_max_entries)
        self.audit = audit

        self.condition_evaluator = ConditionEvaluator(self.settings.regex_cache_size)
        self.policy_engine = PolicyEngine(self.condition_evaluator)
        self.permission_resolver = PermissionResolver()
        self.subscription_gate = SubscriptionGate()

    # ================== LAYER 1: SUBSCRIPTION ==================

    @fail_closed(lambda: False)
    def check_subscription(self, context: AccessContext, module_id: str, feature: Optional[str] = None) -> bool:
        """Active plan includes the module (and feature) and no usage limit is reached"""
        snapshot = self.registry.snapshot()
        reason = self.subscription_gate.denial_reason(context, snapshot.plans, module_id, feature)
        self._audit(context, "access", AuditResourceType.MODULE, module_id, feature or module_id, reason)
        return reason is None

    @fail_closed(lambda: False)
    def has_module_access(self, context: AccessContext, module_id: str) -> bool:
        """Subscription check plus the module's own availability and requirements"""
        reason = self._module_denial_reason(self.registry.snapshot(), context, module_id)
        self._audit(context, "access", AuditResourceType.MODULE, module_id, module_id, reason)
        return reason is None

    @fail_closed(lambda: False)
    def has_feature_access(self, context: AccessContext, module_id: str, feature: str) -> bool:
        reason = self._module_denial_reason(self.registry.snapshot(), context, module_id, feature)
        self._audit(context, "access", AuditResourceType.MODULE, module_id, feature, reason)
        return reason is None

    # ================== LAYER 2: ROLE PERMISSIONS ==================

    @fail_closed(PermissionResult.denied)
    def check_permission(self, context: AccessContext, doc_type: str, action) -> PermissionResult:
        """Union of role grants for the action, widest scope, record filter when a document is targeted"""
        result = self.permission_resolver.check_permission(
            self.registry.snapshot().roles, context, doc_type, action
        )
        document_id = context.document.id if context.document and context.document.id else doc_type
        self._audit(
            context,
            getattr(action, "value", str(action)),
            AuditResourceType.DOCUMENT,
            document_id,
            doc_type,
            None if result.allowed else "no role grants this action in scope",
        )
        return result

    @fail_closed(lambda: DataScope.OWN)
    def get_data_scope(self, context: AccessContext, doc_type: str, action=CrudAction.READ) -> DataScope:
        return self.permission_resolver.get_data_scope(
            self.registry.snapshot().roles, context, doc_type, action
        )

    # ================== LAYER 3: ABAC FIELD POLICIES ==================

    @fail_closed(FieldAccess.denied)
    def evaluate_abac(self, context: AccessContext, doc_type: str, field: str) -> FieldAccess:
        access = self.policy_engine.evaluate(context, self.registry.snapshot().policies, doc_type, field)
        self._audit(
            context,
            "view",
            AuditResourceType.FIELD,
            f"{doc_type}.{field}",
            field,
            None if access.readable else "no policy grants access",
        )
        return access

    @fail_closed(lambda: False)
    def can_access_field(self, context: AccessContext, doc_type: str, field: str, mode=AccessMode.READ) -> bool:
        access = self.policy_engine.evaluate(context, self.registry.snapshot().policies, doc_type, field)
        return access.allows(AccessMode(mode))

    @fail_closed(list)
    def filter_fields(
        self,
        context: AccessContext,
        doc_type: str,
        fields: Iterable[str],
        mode=AccessMode.READ,
    ) -> List[str]:
        return self.policy_engine.filter_fields(
            context, self.registry.snapshot().policies, doc_type, fields, AccessMode(mode)
        )

    @fail_closed(list)
    def filter_actions(self, context: AccessContext, doc_type: str, actions: Iterable[str]) -> List[str]:
        """CRUD-like actions go through the role permissions; other actions pass by default"""
        return self._filter_actions(self.registry.snapshot(), context, doc_type, actions)

    # ================== AGGREGATE ==================

    @fail_closed(DocumentAccess.denied)
    def get_document_access(self, context: AccessContext, doc_type: str, fields: Iterable[str]) -> DocumentAccess:
        """CRUD permissions, read scope, per-field access and available actions for one document type"""
        snapshot = self.registry.snapshot()
        results = {
            action: self.permission_resolver.check_permission(snapshot.roles, context, doc_type, action)
            for action in CrudAction
        }
        field_access = {
            field: self.policy_engine.evaluate(context, snapshot.policies, doc_type, field)
            for field in fields
        }
        return DocumentAccess(
            permissions={action: result.allowed for action, result in results.items()},
            scope=results[CrudAction.READ].scope,
            fields=field_access,
            actions=self._filter_actions(snapshot, context, doc_type, self.settings.document_actions),
            conditional=any(access.conditions for access in field_access.values()),
        )

    # ================== REGISTRY LOADING ==================

    def load_subscription_plans(self, plans: Iterable[Any]) -> RegistrySnapshot:
        return self.registry.load_plans(plans)

    def load_user_roles(self, roles: Iterable[Any]) -> RegistrySnapshot:
        return self.registry.load_roles(roles)

    def load_abac_policies(self, policies: Iterable[Any]) -> RegistrySnapshot:
        return self.registry.load_policies(policies)

    def load_module_config(self, modules: Iterable[Any]) -> RegistrySnapshot:
        return self.registry.load_modules(modules)

    def load_access_config(self, config: Any) -> RegistrySnapshot:
        """Replace the registries present in config together; a malformed payload changes nothing"""
        try:
            return self.registry.apply(config)
        except ValidationError as e:
            logger.error(f"Rejected access config payload: {e.error_count()} error(s)")
            return self.registry.snapshot()

    # ================== HELPERS ==================

    @staticmethod
    def _as_context(context: Any) -> AccessContext:
        if isinstance(context, AccessContext):
            return context
        return AccessContext.model_validate(context)

    def _filter_actions(
        self,
        snapshot: RegistrySnapshot,
        context: AccessContext,
        doc_type: str,
        actions: Iterable[str],
    ) -> List[str]:
        available = []
        for action in actions:
            crud_action = resolve_crud_action(action)
            if crud_action is None:
                if isinstance(action, str) and self.settings.allow_unknown_actions:
                    available.append(action)
                continue
            if self.permission_resolver.check_permission(snapshot.roles, context, doc_type, crud_action).allowed:
                available.append(action)
        return available

    def _module_denial_reason(
        self,
        snapshot: RegistrySnapshot,
        context: AccessContext,
        module_id: str,
        feature: Optional[str] = None,
    ) -> Optional[str]:
        reason = self.subscription_gate.denial_reason(context, snapshot.plans, module_id, feature)
        if reason is not None:
            return reason

        module = snapshot.modules.get(module_id)
        if module is None:
            return None

        if not module.available:
            return f"module '{module_id}' is unavailable"

        if feature is not None and module.features.get(feature) is False:
            return f"feature '{feature}' is disabled for module '{module_id}'"

        plan = self.subscription_gate.resolve_plan(context.subscription, snapshot.plans)
        requirements = module.requirements
        if requirements is not None:
            if not tier_satisfies(plan, requirements.min_tier):
                return f"module '{module_id}' requires the {requirements.min_tier.value} tier"
            missing = [name for name in requirements.features if name not in plan.features]
            if missing:
                return f"module '{module_id}' requires features {missing}"

        for resource, limit in (module.limits or {}).items():
            if context.subscription.usage.get(resource, 0) >= limit:
                return f"module usage limit reached for '{resource}'"

        return None

    def _audit(
        self,
        context: AccessContext,
        action: str,
        resource_type: AuditResourceType,
        resource_id: str,
        resource_name: str,
        reason: Optional[str],
    ) -> None:
        if self.audit is None:
            return
        self.audit.record(
            context,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            resource_name=resource_name,
            granted=reason is None,
            reason=reason,
        )
