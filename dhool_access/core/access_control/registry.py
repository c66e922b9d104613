"""
Access registries: subscription plans, roles, ABAC policies and module configs.

All four live in one immutable RegistrySnapshot. Every write builds a new
snapshot and swaps it in with a single reference assignment, so a reader
holding snapshot() never sees a half-applied reload. Writers are serialised
by a lock; readers take none.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Type, TypeVar

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from dhool_access.utils.logger import Logger
from .abac.models import ABACPolicy
from .models import ModuleAccess, SubscriptionPlan, UserRole

logger = Logger(__name__)

EntryModel = TypeVar("EntryModel", bound=BaseModel)


def _empty() -> Mapping:
    return MappingProxyType({})


@dataclass(frozen=True)
class RegistrySnapshot:
    plans: Mapping[str, SubscriptionPlan] = field(default_factory=_empty)
    roles: Mapping[str, UserRole] = field(default_factory=_empty)
    policies: Mapping[Tuple[str, str], Tuple[ABACPolicy, ...]] = field(default_factory=_empty)
    modules: Mapping[str, ModuleAccess] = field(default_factory=_empty)
    version: int = 0
    loaded_at: Optional[datetime] = field(default=None, compare=False)

    def policies_for(self, doc_type: str, field_name: str) -> Tuple[ABACPolicy, ...]:
        return self.policies.get((doc_type, field_name), ())


class AccessConfig(BaseModel):
    """Raw registry payload as delivered by the admin API; entries are validated one by one"""

    subscription_plans: Optional[List[Any]] = Field(
        default=None,
        validation_alias=AliasChoices("subscription_plans", "subscriptionPlans", "plans"),
    )
    user_roles: Optional[List[Any]] = Field(
        default=None,
        validation_alias=AliasChoices("user_roles", "userRoles", "roles"),
    )
    abac_policies: Optional[List[Any]] = Field(
        default=None,
        validation_alias=AliasChoices("abac_policies", "abacPolicies", "policies"),
    )
    module_config: Optional[List[Any]] = Field(
        default=None,
        validation_alias=AliasChoices("module_config", "moduleConfig", "modules"),
    )


def parse_entries(model: Type[EntryModel], entries: Optional[Iterable[Any]], kind: str) -> List[EntryModel]:
    """Validate registry entries, logging and skipping the malformed ones"""
    parsed: List[EntryModel] = []
    for position, entry in enumerate(entries or ()):
        if isinstance(entry, model):
            parsed.append(entry)
            continue
        try:
            parsed.append(model.model_validate(entry))
        except ValidationError as e:
            logger.warning(f"Skipping malformed {kind} entry #{position}: {e.error_count()} error(s): {e.errors()[0]['msg']}")
    return parsed


def _index_by_id(entries: Iterable[EntryModel], key: str, kind: str) -> Mapping[str, EntryModel]:
    index: Dict[str, EntryModel] = {}
    for entry in entries:
        entry_id = getattr(entry, key)
        if entry_id in index:
            logger.warning(f"Duplicate {kind} id '{entry_id}'; the later entry replaces the earlier one")
        index[entry_id] = entry
    return MappingProxyType(index)


def _index_policies(policies: Iterable[ABACPolicy]) -> Mapping[Tuple[str, str], Tuple[ABACPolicy, ...]]:
    grouped: Dict[Tuple[str, str], List[ABACPolicy]] = {}
    for policy in policies:
        grouped.setdefault(policy.key, []).append(policy)
    return MappingProxyType({key: tuple(items) for key, items in grouped.items()})


class AccessRegistry:
    """Owns the current RegistrySnapshot and its load/replace lifecycle"""

    def __init__(self, config: Optional[Any] = None):
        self._snapshot = RegistrySnapshot()
        self._write_lock = threading.Lock()
        if config is not None:
            self.init(config)

    def snapshot(self) -> RegistrySnapshot:
        """Current registries; the returned object never changes"""
        return self._snapshot

    @property
    def version(self) -> int:
        return self._snapshot.version

    # ── Whole-registry lifecycle ────────────────────────────────

    def init(self, config: Any) -> RegistrySnapshot:
        """Populate all registries at startup"""
        if self._snapshot.version:
            logger.warning("Access registry already initialised; reloading")
        return self.reload(config)

    def reload(self, config: Any) -> RegistrySnapshot:
        """Replace all four registries at once; sections absent from config become empty"""
        payload = self._as_config(config)
        return self.replace(
            plans=payload.subscription_plans or [],
            roles=payload.user_roles or [],
            policies=payload.abac_policies or [],
            modules=payload.module_config or [],
        )

    def apply(self, config: Any) -> RegistrySnapshot:
        """Replace only the sections present in config, in one swap"""
        payload = self._as_config(config)
        return self.replace(
            plans=payload.subscription_plans,
            roles=payload.user_roles,
            policies=payload.abac_policies,
            modules=payload.module_config,
        )

    def clear(self) -> RegistrySnapshot:
        return self.replace(plans=[], roles=[], policies=[], modules=[])

    # ── Single-registry loads ───────────────────────────────────

    def load_plans(self, plans: Iterable[Any]) -> RegistrySnapshot:
        return self.replace(plans=plans)

    def load_roles(self, roles: Iterable[Any]) -> RegistrySnapshot:
        return self.replace(roles=roles)

    def load_policies(self, policies: Iterable[Any]) -> RegistrySnapshot:
        return self.replace(policies=policies)

    def load_modules(self, modules: Iterable[Any]) -> RegistrySnapshot:
        return self.replace(modules=modules)

    def replace(
        self,
        plans: Optional[Iterable[Any]] = None,
        roles: Optional[Iterable[Any]] = None,
        policies: Optional[Iterable[Any]] = None,
        modules: Optional[Iterable[Any]] = None,
    ) -> RegistrySnapshot:
        """
        Build new indexes for the given sections and swap in a new snapshot.

        A section passed as None keeps its current contents.
        """
        plan_index = None
        if plans is not None:
            plan_index = _index_by_id(parse_entries(SubscriptionPlan, plans, "subscription plan"), "id", "plan")
        role_index = None
        if roles is not None:
            role_index = _index_by_id(parse_entries(UserRole, roles, "user role"), "id", "role")
        policy_index = None
        if policies is not None:
            policy_index = _index_policies(parse_entries(ABACPolicy, policies, "ABAC policy"))
        module_index = None
        if modules is not None:
            module_index = _index_by_id(parse_entries(ModuleAccess, modules, "module"), "module_id", "module")

        with self._write_lock:
            current = self._snapshot
            snapshot = RegistrySnapshot(
                plans=current.plans if plan_index is None else plan_index,
                roles=current.roles if role_index is None else role_index,
                policies=current.policies if policy_index is None else policy_index,
                modules=current.modules if module_index is None else module_index,
                version=current.version + 1,
                loaded_at=datetime.now(timezone.utc),
            )
            self._snapshot = snapshot

        logger.info(
            f"Access registry v{snapshot.version} loaded: {len(snapshot.plans)} plans, "
            f"{len(snapshot.roles)} roles, {sum(len(p) for p in snapshot.policies.values())} policies, "
            f"{len(snapshot.modules)} modules"
        )
        return snapshot

    @staticmethod
    def _as_config(config: Any) -> AccessConfig:
        if isinstance(config, AccessConfig):
            return config
        return AccessConfig.model_validate(config)
