from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import date, datetime, timezone
from enum import Enum
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Iterable, Optional, Sequence, Tuple

from dhool_access.utils.logger import Logger
from .models import (
    ABACCondition,
    ABACPolicy,
    AccessMode,
    ConditionOperator,
    FieldAccess,
    FieldAccessLevel,
    LogicOperator,
)

if TYPE_CHECKING:
    from ..models import AccessContext

logger = Logger(__name__)

ORDERING_OPERATORS = {
    ConditionOperator.GREATER_THAN: lambda a, b: a > b,
    ConditionOperator.LESS_THAN: lambda a, b: a < b,
    ConditionOperator.GREATER_THAN_OR_EQUAL: lambda a, b: a >= b,
    ConditionOperator.LESS_THAN_OR_EQUAL: lambda a, b: a <= b,
}

USER_SOURCE = "user"
DOCUMENT_SOURCES = ("document", "record")
SUBSCRIPTION_SOURCE = "subscription"


class ConditionEvaluator:
    """Evaluates ABAC conditions against an access context"""

    def __init__(self, regex_cache_size: int = 256):
        self._compile = lru_cache(maxsize=regex_cache_size)(re.compile)

    def evaluate(self, condition: ABACCondition, context: "AccessContext") -> bool:
        """Evaluate a condition (and its nested conditions) against the context"""
        try:
            if not condition.attribute and not condition.conditions:
                return False

            outcomes = self._outcomes(condition, context)
            if condition.logic == LogicOperator.OR:
                return any(outcomes)
            return all(outcomes)
        except Exception as e:
            logger.error(f"Error evaluating condition on {condition.attribute!r}: {e}")
            return False

    def evaluate_all(self, conditions: Iterable[ABACCondition], context: "AccessContext") -> bool:
        """Top-level policy conditions are ANDed; an empty list always passes"""
        return all(self.evaluate(condition, context) for condition in conditions)

    def _outcomes(self, condition: ABACCondition, context: "AccessContext"):
        if condition.attribute:
            yield self._evaluate_simple_condition(condition, context)
        for nested in condition.conditions or ():
            yield self.evaluate(nested, context)

    def _evaluate_simple_condition(self, condition: ABACCondition, context: "AccessContext") -> bool:
        actual = self.resolve_attribute(context, condition.attribute)
        return self.compare(condition.operator, actual, condition.value)

    # ── Attribute resolution ────────────────────────────────────

    def resolve_attribute(self, context: "AccessContext", attribute: str) -> Any:
        """Resolve a dotted attribute path; None means the attribute is absent"""
        source, _, path = attribute.partition(".")

        if source == USER_SOURCE and path:
            user = context.user
            well_known = {
                "id": user.id,
                "roles": list(user.roles),
                "department": user.department,
                "team": user.team,
            }
            return self._lookup(path, user.attributes, well_known)

        if source in DOCUMENT_SOURCES and path:
            document = context.document
            if document is None:
                return None
            well_known = {
                "id": document.id,
                "type": document.type,
                "owner": document.owner,
                "team": document.team,
                "department": document.department,
                "state": document.state,
            }
            return self._lookup(path, document.data, well_known)

        if source == SUBSCRIPTION_SOURCE and path:
            subscription = context.subscription
            if subscription is None:
                return None
            well_known = {
                "status": subscription.status,
                "plan_id": subscription.plan_ref,
                "tier": subscription.plan.tier if subscription.plan else None,
                "usage": dict(subscription.usage),
            }
            return self._lookup(path, {}, well_known)

        top_level = {
            "action": context.action,
            "field": context.field,
            "ip": context.ip,
            "user_agent": context.user_agent,
            "timestamp": context.timestamp,
        }
        return self._lookup(attribute, context.metadata, top_level)

    def _lookup(self, path: str, bag: Mapping, fallback: Mapping) -> Any:
        parts = path.split(".")
        value = _dig(bag, parts)
        if value is None:
            value = _dig(fallback, parts)
        return _normalize(value)

    # ── Operators ───────────────────────────────────────────────

    def compare(self, operator: ConditionOperator, actual: Any, expected: Any) -> bool:
        if operator in (ConditionOperator.IN, ConditionOperator.NOT_IN):
            if not isinstance(expected, list):
                return False
            if actual is None:
                return operator == ConditionOperator.NOT_IN
            found = any(_strict_equals(actual, item) for item in expected)
            return found if operator == ConditionOperator.IN else not found

        # An absent attribute differs from every concrete value
        if actual is None:
            return operator == ConditionOperator.NOT_EQUALS

        if operator == ConditionOperator.EQUALS:
            return _strict_equals(actual, expected)
        if operator == ConditionOperator.NOT_EQUALS:
            return not _strict_equals(actual, expected)
        if operator in ORDERING_OPERATORS:
            return _safe_order(actual, expected, ORDERING_OPERATORS[operator])
        if expected is None:
            return False
        if operator == ConditionOperator.CONTAINS:
            if isinstance(actual, list):
                return any(_strict_equals(item, expected) for item in actual)
            return _to_text(expected) in _to_text(actual)
        if operator == ConditionOperator.STARTS_WITH:
            return _to_text(actual).startswith(_to_text(expected))
        if operator == ConditionOperator.ENDS_WITH:
            return _to_text(actual).endswith(_to_text(expected))
        if operator == ConditionOperator.REGEX:
            return self._regex_search(expected, actual)
        return False

    def _regex_search(self, pattern: Any, actual: Any) -> bool:
        try:
            compiled = self._compile(_to_text(pattern))
        except re.error as e:
            logger.warning(f"Invalid regex pattern {pattern!r}: {e}")
            return False
        return compiled.search(_to_text(actual)) is not None


class PolicyEngine:
    """First-match ABAC evaluation of field policies"""

    def __init__(self, condition_evaluator: Optional[ConditionEvaluator] = None):
        self.condition_evaluator = condition_evaluator or ConditionEvaluator()

    def evaluate_field(self, context: "AccessContext", policies: Sequence[ABACPolicy]) -> FieldAccess:
        """
        Resolve access to one field from the policies registered for it.

        Active, currently effective policies are tried highest priority first
        (registration order on ties). The first policy whose conditions all
        pass decides; when none passes the field is denied.
        """
        moment = context.timestamp or datetime.now(timezone.utc)
        candidates = [p for p in policies if p.active and p.is_effective(moment)]

        for policy in sorted(candidates, key=lambda p: p.priority, reverse=True):
            if not self.condition_evaluator.evaluate_all(policy.conditions, context):
                continue

            readable = policy.access in (FieldAccessLevel.READ, FieldAccessLevel.WRITE)
            writable = policy.access == FieldAccessLevel.WRITE
            logger.debug(
                f"Policy '{policy.name}' decided {policy.doc_type}.{policy.field}: {policy.access.value}"
            )
            return FieldAccess(
                readable=readable,
                writable=writable,
                source=policy.name,
                conditions=list(policy.conditions) or None,
            )

        return FieldAccess.denied()

    def evaluate(
        self,
        context: "AccessContext",
        index: Mapping[Tuple[str, str], Sequence[ABACPolicy]],
        doc_type: str,
        field: str,
    ) -> FieldAccess:
        return self.evaluate_field(context, index.get((doc_type, field), ()))

    def filter_fields(
        self,
        context: "AccessContext",
        index: Mapping[Tuple[str, str], Sequence[ABACPolicy]],
        doc_type: str,
        fields: Iterable[str],
        mode: AccessMode = AccessMode.READ,
    ) -> list:
        """Fields the context may read (or write, with mode=write)"""
        return [
            field
            for field in fields
            if self.evaluate(context, index, doc_type, field).allows(mode)
        ]


def _dig(value: Any, parts: Sequence[str]) -> Any:
    for part in parts:
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
        if value is None:
            return None
    return value


def _normalize(value: Any) -> Any:
    """Reduce resolved attributes to the tagged value shapes conditions compare against"""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_normalize(item) for item in value]
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _strict_equals(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if _is_number(left) and _is_number(right):
        return left == right
    if isinstance(left, list) and isinstance(right, list):
        return len(left) == len(right) and all(
            _strict_equals(a, b) for a, b in zip(left, right)
        )
    return type(left) is type(right) and left == right


def _safe_order(actual: Any, expected: Any, comparator) -> bool:
    """Order numbers against numbers and text against text; anything else fails closed"""
    if _is_number(actual) and _is_number(expected):
        return comparator(actual, expected)
    if isinstance(actual, str) and isinstance(expected, str):
        return comparator(actual, expected)
    return False


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, list):
        return ",".join(_to_text(item) for item in value)
    return str(value)
