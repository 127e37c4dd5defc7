from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..errors import ErrorKind, error_for_kind
from .models import Subscription


@dataclass(frozen=True)
class LifecycleResult:
    """
    Outcome of a lifecycle operation.

    `subscription` is the record the caller should persist (the input record
    when nothing changed, None only when no record exists at all).
    """
    subscription: Optional[Subscription]
    error: Optional[ErrorKind] = None
    changed: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> Optional[Subscription]:
        """Return the subscription, or raise the AppError matching `error`."""
        if self.error is None:
            return self.subscription
        details = {}
        if self.subscription is not None:
            details["subscription_id"] = self.subscription.id
            details["status"] = self.subscription.status.value
        raise error_for_kind(self.error, details=details)


@dataclass(frozen=True)
class MarkPremiumResult(LifecycleResult):
    """Outcome of flagging a listing premium against a subscription."""

    auto_cancelled: bool = False

    @property
    def allowed(self) -> bool:
        return self.error is None
