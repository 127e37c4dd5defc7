from __future__ import annotations

import json
import logging
from decimal import Decimal, InvalidOperation
from pathlib import Path
from threading import RLock
from typing import Dict, List, Optional

from .. import config
from .models import PlanType, SubscriptionPlan

logger = logging.getLogger(__name__)


class PlanCatalogLoader:
    """Loads subscription plans from a JSON catalog with reload support."""

    def __init__(self, config_path: Optional[str] = None) -> None:
        self._config_path = Path(config_path or config.PLANS_CONFIG_PATH)
        self._lock = RLock()
        self._plans: Dict[str, SubscriptionPlan]
        self.reload()

    def reload(self) -> None:
        """Reload the catalog from disk; the previous catalog stays on failure."""
        raw = self._read_config_file()
        parsed = self._parse_config(raw)
        with self._lock:
            self._plans = parsed
        logger.info(
            "Loaded subscription plan catalog",
            extra={"path": str(self._config_path), "plan_count": len(parsed)},
        )

    def get(self, plan_id: str) -> SubscriptionPlan:
        normalized = str(plan_id).strip()
        if not normalized:
            raise ValueError("plan_id is required")
        with self._lock:
            plan = self._plans.get(normalized)
        if plan is None:
            raise KeyError(f"unknown plan_id: {plan_id}")
        return plan

    def all(self) -> List[SubscriptionPlan]:
        with self._lock:
            return list(self._plans.values())

    def purchasable(self) -> List[SubscriptionPlan]:
        """Active plans, cheapest first."""
        return sorted((p for p in self.all() if p.is_active), key=lambda p: (p.price, p.id))

    def _read_config_file(self) -> dict:
        with self._config_path.open("r", encoding="utf-8") as handle:
            raw = json.load(handle)
        if not isinstance(raw, dict):
            raise ValueError("plan catalog must contain a top-level object")
        return raw

    @staticmethod
    def _parse_config(raw: dict) -> Dict[str, SubscriptionPlan]:
        plans_raw = raw.get("plans")
        if not isinstance(plans_raw, list):
            raise ValueError("plan catalog must include a list field named 'plans'")

        plans: Dict[str, SubscriptionPlan] = {}
        for entry in plans_raw:
            if not isinstance(entry, dict):
                raise ValueError(f"plan entry must be an object: {entry!r}")

            plan_id = entry.get("id")
            if not isinstance(plan_id, str) or not plan_id.strip():
                raise ValueError("each plan needs a non-empty string id")
            plan_id = plan_id.strip()
            if plan_id in plans:
                raise ValueError(f"duplicate plan id: {plan_id}")

            plan_type = entry.get("planType")
            if plan_type not in {t.value for t in PlanType}:
                raise ValueError(f"plan '{plan_id}' has invalid planType: {plan_type!r}")

            try:
                price = Decimal(str(entry.get("price")))
            except InvalidOperation:
                raise ValueError(f"plan '{plan_id}' has invalid price: {entry.get('price')!r}") from None

            post_count = entry.get("postCount")
            if not isinstance(post_count, int) or isinstance(post_count, bool):
                raise ValueError(f"plan '{plan_id}' postCount must be an integer")

            features = entry.get("features", [])
            if not isinstance(features, list) or not all(isinstance(f, str) for f in features):
                raise ValueError(f"plan '{plan_id}' features must be a list of strings")

            is_active = entry.get("isActive", True)
            if not isinstance(is_active, bool):
                raise ValueError(f"plan '{plan_id}' isActive must be a boolean")

            duration_months = entry.get("durationMonths")
            if duration_months is not None and (
                not isinstance(duration_months, int) or isinstance(duration_months, bool)
            ):
                raise ValueError(f"plan '{plan_id}' durationMonths must be an integer")

            try:
                plans[plan_id] = SubscriptionPlan(
                    id=plan_id,
                    name=str(entry.get("name") or plan_id),
                    plan_type=PlanType(plan_type),
                    price=price,
                    post_count=post_count,
                    features=tuple(f.strip() for f in features if f.strip()),
                    is_active=is_active,
                    duration_months=duration_months,
                )
            except ValueError as exc:
                raise ValueError(f"plan '{plan_id}': {exc}") from exc

        if not plans:
            raise ValueError("plan catalog must define at least one plan")

        return plans
