"""
ABAC (Attribute-Based Access Control) for field-level access

- Models for field policies and their conditions
- Condition evaluator with strict, fail-closed operators
- Policy engine resolving readable/writable per (doc_type, field)
"""

from .models import (
    ABACCondition, ABACPolicy, AccessMode, ConditionOperator, ConditionValue,
    EffectiveWindow, FieldAccess, FieldAccessLevel, LogicOperator
)
from .engine import ConditionEvaluator, PolicyEngine

__all__ = [
    # Models
    "ABACCondition", "ABACPolicy", "AccessMode", "ConditionOperator", "ConditionValue",
    "EffectiveWindow", "FieldAccess", "FieldAccessLevel", "LogicOperator",

    # Engine
    "ConditionEvaluator", "PolicyEngine",
]
