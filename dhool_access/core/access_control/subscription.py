from typing import Mapping, Optional

from dhool_access.utils.logger import Logger
from .models import (
    TIER_LEVELS,
    AccessContext,
    PlanTier,
    SubscriptionPlan,
    SubscriptionState,
)

logger = Logger(__name__)


def tier_satisfies(plan: SubscriptionPlan, min_tier: Optional[PlanTier]) -> bool:
    """Check a plan against a minimum tier (free < starter < professional < enterprise)"""
    if min_tier is None:
        return True
    return plan.tier_level >= TIER_LEVELS[PlanTier(min_tier)]


class SubscriptionGate:
    """Module, feature and usage-limit checks against a subscription plan"""

    def resolve_plan(
        self,
        subscription: SubscriptionState,
        plans: Mapping[str, SubscriptionPlan],
    ) -> Optional[SubscriptionPlan]:
        """Registered plan for the subscription's plan id, else the embedded plan"""
        plan_ref = subscription.plan_ref
        if plan_ref and plan_ref in plans:
            return plans[plan_ref]
        return subscription.plan

    def denial_reason(
        self,
        context: AccessContext,
        plans: Mapping[str, SubscriptionPlan],
        module_id: str,
        feature: Optional[str] = None,
    ) -> Optional[str]:
        """Return why access is denied, or None when the subscription grants it"""
        subscription = context.subscription
        if subscription is None:
            return "no subscription"

        if not subscription.is_active:
            return f"subscription is {subscription.status.value}"

        plan = self.resolve_plan(subscription, plans)
        if plan is None:
            return f"plan '{subscription.plan_ref}' not found"

        if not plan.active:
            return f"plan '{plan.id}' is inactive"

        if module_id not in plan.modules:
            return f"module '{module_id}' not in plan '{plan.id}'"

        if feature and feature not in plan.features:
            return f"feature '{feature}' not in plan '{plan.id}'"

        resource = self.exhausted_resource(plan, subscription)
        if resource is not None:
            return f"usage limit reached for '{resource}'"

        return None

    def exhausted_resource(
        self, plan: SubscriptionPlan, subscription: SubscriptionState
    ) -> Optional[str]:
        """First limited resource whose usage has reached its ceiling"""
        for resource, limit in plan.limits.items():
            if limit is None:
                continue
            if subscription.usage.get(resource, 0) >= limit:
                return resource
        return None

    def check_subscription(
        self,
        context: AccessContext,
        plans: Mapping[str, SubscriptionPlan],
        module_id: str,
        feature: Optional[str] = None,
    ) -> bool:
        reason = self.denial_reason(context, plans, module_id, feature)
        if reason is not None:
            logger.debug(f"Subscription check failed for '{module_id}': {reason}")
            return False
        return True
