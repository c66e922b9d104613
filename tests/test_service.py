"""
Tests for the AccessService facade
"""

import pytest

from dhool_access.core.access_control import (
    AccessService,
    CrudAction,
    DataScope,
    DocumentAccess,
    FieldAccess,
    PermissionResult,
)
from dhool_access.core.config import AccessSettings
from factories import STARTER_PLAN, active_subscription, make_context, policy, role


SALES_REP = role(
    "sales_rep",
    "invoice",
    {"action": "read", "allowed": True, "scope": "team"},
    {"action": "update", "allowed": True, "scope": "own"},
)

FINANCE_ONLY = [{"attribute": "user.department", "operator": "=", "value": "finance"}]


@pytest.fixture
def loaded(service):
    service.load_access_config({
        "subscriptionPlans": [STARTER_PLAN],
        "userRoles": [SALES_REP],
        "abacPolicies": [
            policy("amount-read", "read", field="amount"),
            policy("amount-finance", "write", priority=10, field="amount", conditions=FINANCE_ONLY),
            policy("customer-write", "write", field="customer"),
        ],
    })
    return service


class TestPermissionQueries:
    def test_check_permission(self, loaded):
        result = loaded.check_permission(make_context(), "invoice", "read")
        assert result == PermissionResult(allowed=True, scope=DataScope.TEAM)

    def test_get_data_scope(self, loaded):
        assert loaded.get_data_scope(make_context(), "invoice") == DataScope.TEAM
        assert loaded.get_data_scope(make_context(), "invoice", "update") == DataScope.OWN
        assert loaded.get_data_scope(make_context(), "quotation") == DataScope.OWN

    def test_filter_actions_maps_aliases(self, loaded):
        actions = loaded.filter_actions(make_context(), "invoice", ["view", "edit", "remove", "create"])
        assert actions == ["view", "edit"]

    def test_filter_actions_passes_non_crud_actions(self, loaded):
        assert loaded.filter_actions(make_context(), "invoice", ["export", "delete"]) == ["export"]

    def test_filter_actions_can_deny_non_crud_actions(self, registry):
        strict = AccessService(registry, AccessSettings(_env_file=None, allow_unknown_actions=False))
        registry.load_roles([SALES_REP])
        assert strict.filter_actions(make_context(), "invoice", ["read", "export"]) == ["read"]


class TestFieldQueries:
    def test_evaluate_abac(self, loaded):
        assert loaded.evaluate_abac(make_context(), "invoice", "amount").source == "amount-read"
        assert loaded.evaluate_abac(make_context(department="finance"), "invoice", "amount").writable is True

    def test_can_access_field(self, loaded):
        context = make_context()
        assert loaded.can_access_field(context, "invoice", "amount") is True
        assert loaded.can_access_field(context, "invoice", "amount", "write") is False
        assert loaded.can_access_field(context, "invoice", "notes") is False

    def test_filter_fields(self, loaded):
        fields = ["amount", "customer", "notes"]
        assert loaded.filter_fields(make_context(), "invoice", fields) == ["amount", "customer"]
        assert loaded.filter_fields(make_context(), "invoice", fields, "write") == ["customer"]


class TestDocumentAccess:
    def test_document_access_aggregates_every_layer(self, loaded):
        access = loaded.get_document_access(make_context(), "invoice", ["amount", "customer"])
        assert access.permissions == {
            CrudAction.CREATE: False,
            CrudAction.READ: True,
            CrudAction.UPDATE: True,
            CrudAction.DELETE: False,
        }
        assert access.scope == DataScope.TEAM
        assert access.fields["amount"].readable is True
        assert access.fields["amount"].writable is False
        assert access.fields["customer"].writable is True
        assert access.actions == ["read", "update", "export", "print"]
        assert access.conditional is False

    def test_document_access_is_conditional_when_winner_has_conditions(self, loaded):
        access = loaded.get_document_access(make_context(department="finance"), "invoice", ["amount"])
        assert access.fields["amount"].source == "amount-finance"
        assert access.conditional is True

    def test_document_access_without_roles(self, service):
        access = service.get_document_access(make_context(), "invoice", ["amount"])
        assert not any(access.permissions.values())
        assert access.scope == DataScope.OWN
        assert access.fields["amount"] == FieldAccess.denied()
        assert access.actions == ["export", "print"]


class TestModuleAccess:
    def test_subscription_check(self, loaded):
        context = make_context(subscription=active_subscription())
        assert loaded.check_subscription(context, "sales") is True
        assert loaded.check_subscription(context, "hr") is False
        assert loaded.check_subscription(context, "sales", "export") is True

    def test_module_access_without_module_config_follows_subscription(self, loaded):
        context = make_context(subscription=active_subscription())
        assert loaded.has_module_access(context, "crm") is True
        assert loaded.has_module_access(make_context(), "crm") is False

    def test_unavailable_module_denies(self, loaded):
        loaded.load_module_config([{"moduleId": "crm", "available": False}])
        assert loaded.has_module_access(make_context(subscription=active_subscription()), "crm") is False

    def test_module_feature_switch(self, loaded):
        loaded.load_module_config([{"moduleId": "sales", "features": {"export": False}}])
        context = make_context(subscription=active_subscription())
        assert loaded.has_module_access(context, "sales") is True
        assert loaded.has_feature_access(context, "sales", "export") is False

    def test_feature_must_be_in_plan(self, loaded):
        context = make_context(subscription=active_subscription())
        assert loaded.has_feature_access(context, "sales", "export") is True
        assert loaded.has_feature_access(context, "sales", "forecasting") is False

    def test_module_tier_requirement(self, loaded):
        loaded.load_module_config([
            {"moduleId": "sales", "requirements": {"minTier": "professional"}},
            {"moduleId": "crm", "requirements": {"minTier": "starter", "features": ["export"]}},
        ])
        context = make_context(subscription=active_subscription())
        assert loaded.has_module_access(context, "sales") is False
        assert loaded.has_module_access(context, "crm") is True

    def test_module_feature_requirement(self, loaded):
        loaded.load_module_config([{"moduleId": "crm", "requirements": {"features": ["forecasting"]}}])
        assert loaded.has_module_access(make_context(subscription=active_subscription()), "crm") is False

    def test_module_limits(self, loaded):
        loaded.load_module_config([{"moduleId": "crm", "limits": {"contacts": 100}}])
        below = make_context(subscription=active_subscription(usage={"contacts": 99}))
        at = make_context(subscription=active_subscription(usage={"contacts": 100}))
        assert loaded.has_module_access(below, "crm") is True
        assert loaded.has_module_access(at, "crm") is False


class TestFailClosed:
    def test_dict_context_is_accepted(self, loaded):
        context = {"user": {"id": "u1", "roles": ["sales_rep"], "team": "east"}}
        assert loaded.check_permission(context, "invoice", "read").allowed is True

    def test_invalid_context_returns_defaults(self, loaded):
        invalid = {"user": {"roles": "not-a-list"}}
        assert loaded.check_permission(invalid, "invoice", "read") == PermissionResult.denied()
        assert loaded.get_data_scope(invalid, "invoice") == DataScope.OWN
        assert loaded.evaluate_abac(invalid, "invoice", "amount") == FieldAccess.denied()
        assert loaded.can_access_field(invalid, "invoice", "amount") is False
        assert loaded.filter_fields(invalid, "invoice", ["amount"]) == []
        assert loaded.filter_actions(invalid, "invoice", ["read"]) == []
        assert loaded.get_document_access(invalid, "invoice", ["amount"]) == DocumentAccess.denied()
        assert loaded.check_subscription(invalid, "sales") is False
        assert loaded.has_module_access(invalid, "sales") is False
        assert loaded.has_feature_access(invalid, "sales", "export") is False

    def test_internal_error_returns_default(self, loaded, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(loaded.permission_resolver, "check_permission", explode)
        assert loaded.check_permission(make_context(), "invoice", "read") == PermissionResult.denied()

    def test_invalid_field_mode_returns_default(self, loaded):
        assert loaded.can_access_field(make_context(), "invoice", "amount", "admin") is False

    @pytest.mark.parametrize("action", ["view", "edit", "remove", "export"])
    def test_context_action_names_do_not_invalidate_context(self, loaded, action):
        context = {
            "user": {"id": "u1", "roles": ["sales_rep"], "team": "east"},
            "subscription": active_subscription(),
            "action": action,
        }
        assert loaded.check_subscription(context, "sales") is True
        assert loaded.has_module_access(context, "sales") is True
        assert loaded.check_permission(context, "invoice", "read").allowed is True
        assert loaded.evaluate_abac(context, "invoice", "amount").readable is True

    def test_context_action_aliases_resolve_to_crud_actions(self):
        assert make_context(action="view").action == CrudAction.READ
        assert make_context(action="Edit").action == CrudAction.UPDATE
        assert make_context(action="export").action == "export"
        assert make_context(action=None).action == CrudAction.READ


class TestConfigLoading:
    def test_individual_loaders(self, service):
        service.load_subscription_plans([STARTER_PLAN])
        service.load_user_roles([SALES_REP])
        service.load_abac_policies([policy("amount-read", "read")])
        snapshot = service.load_module_config([{"moduleId": "sales"}])
        assert snapshot.version == 4
        assert list(snapshot.plans) == ["starter"]
        assert list(snapshot.roles) == ["sales_rep"]
        assert list(snapshot.modules) == ["sales"]

    def test_malformed_config_changes_nothing(self, loaded):
        before = loaded.registry.snapshot()
        after = loaded.load_access_config({"userRoles": "not-a-list"})
        assert after is before
        assert loaded.check_permission(make_context(), "invoice", "read").allowed is True

    def test_partial_config_keeps_other_sections(self, loaded):
        loaded.load_access_config({"abacPolicies": []})
        assert loaded.check_permission(make_context(), "invoice", "read").allowed is True
        assert loaded.can_access_field(make_context(), "invoice", "amount") is False


class TestAudit:
    def test_audit_disabled_by_default(self, service):
        assert service.audit is None

    def test_enabled_audit_records_decisions(self, registry):
        audited = AccessService(registry, AccessSettings(_env_file=None, audit_enabled=True))
        registry.load_roles([SALES_REP])
        audited.check_permission(make_context(), "invoice", "read")
        audited.check_permission(make_context(), "invoice", "delete")
        audited.evaluate_abac(make_context(), "invoice", "amount")

        entries = audited.audit.entries()
        assert [entry.result.value for entry in entries] == ["granted", "denied", "denied"]
        assert entries[0].resource.name == "invoice"
        assert entries[1].action == "delete"
        assert entries[2].resource.id == "invoice.amount"
