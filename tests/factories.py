from datetime import datetime, timezone

from dhool_access.core.access_control import AccessContext


NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)

STARTER_PLAN = {
    "id": "starter",
    "name": "Starter",
    "tier": "starter",
    "modules": ["sales", "crm"],
    "features": ["export"],
    "limits": {"users": 5, "apiCalls": 1000},
}


def make_context(
    user_id="u1",
    roles=("sales_rep",),
    team="east",
    department="sales",
    attributes=None,
    document=None,
    subscription=None,
    timestamp=NOW,
    **extra,
) -> AccessContext:
    return AccessContext(
        user={
            "id": user_id,
            "roles": list(roles),
            "team": team,
            "department": department,
            "attributes": attributes or {},
        },
        document=document,
        subscription=subscription,
        timestamp=timestamp,
        **extra,
    )


def active_subscription(plan=None, usage=None, status="active"):
    return {
        "plan": plan or STARTER_PLAN,
        "status": status,
        "usage": usage or {},
    }


def role(role_id, doc_type, *permissions, **extra):
    return {
        "id": role_id,
        "name": role_id.replace("_", " ").title(),
        "permissions": {doc_type: list(permissions)},
        **extra,
    }


def policy(policy_id, access, priority=0, conditions=None, doc_type="invoice", field="amount", **extra):
    return {
        "id": policy_id,
        "name": policy_id,
        "docType": doc_type,
        "field": field,
        "access": access,
        "priority": priority,
        "conditions": conditions or [],
        **extra,
    }
