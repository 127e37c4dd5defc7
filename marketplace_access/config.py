"""
Runtime configuration for the marketplace access core.

Values are read once from the environment at import time.
"""

import os
from datetime import timedelta
from typing import Optional

# Subscription plan catalog (see PlanCatalogLoader)
PLANS_CONFIG_PATH = os.getenv("MARKETPLACE_PLANS_PATH", "config/plans.json")

# Declared durations used when a plan does not carry its own
MONTHLY_PLAN_DURATION_MONTHS = int(os.getenv("MONTHLY_PLAN_DURATION_MONTHS", "1"))
YEARLY_PLAN_DURATION_MONTHS = int(os.getenv("YEARLY_PLAN_DURATION_MONTHS", "12"))

# Pending purchases without payment confirmation are cancelled after this
PENDING_PAYMENT_TIMEOUT = timedelta(
    minutes=int(os.getenv("PENDING_PAYMENT_TIMEOUT_MINUTES", "30"))
)

# Bound on conditional-update retries when a premium slot race is lost
PREMIUM_CONSUME_MAX_ATTEMPTS = int(os.getenv("PREMIUM_CONSUME_MAX_ATTEMPTS", "3"))


def default_duration_months(plan_type: str) -> Optional[int]:
    """
    Get the fallback duration for a plan type.

    Args:
        plan_type: monthly, yearly or custom

    Returns:
        Duration in months, or None for custom plans
    """
    if plan_type == "monthly":
        return MONTHLY_PLAN_DURATION_MONTHS
    if plan_type == "yearly":
        return YEARLY_PLAN_DURATION_MONTHS
    return None
