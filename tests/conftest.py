from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from marketplace_access.db_base import Base
from marketplace_access.subscriptions.models import (
    PlanType,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
)

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock the tests can move forward."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def monthly_plan():
    return SubscriptionPlan(
        id="premium-monthly",
        name="Premium Monthly",
        plan_type=PlanType.MONTHLY,
        price=Decimal("29.99"),
        post_count=3,
    )


@pytest.fixture
def yearly_plan():
    return SubscriptionPlan(
        id="premium-yearly",
        name="Premium Yearly",
        plan_type=PlanType.YEARLY,
        price=Decimal("287.90"),
        post_count=60,
    )


@pytest.fixture
def custom_plan():
    return SubscriptionPlan(
        id="dealer-custom",
        name="Dealer Package",
        plan_type=PlanType.CUSTOM,
        price=Decimal("499.00"),
        post_count=150,
    )


def make_subscription(**overrides) -> Subscription:
    values = dict(
        id="sub-1",
        user_id="user-1",
        plan_id="premium-monthly",
        plan_type=PlanType.MONTHLY,
        status=SubscriptionStatus.ACTIVE,
        start_date=NOW - timedelta(days=5),
        end_date=NOW + timedelta(days=25),
        price=Decimal("29.99"),
        post_quota=3,
        consumed_slots=0,
    )
    values.update(overrides)
    return Subscription(**values)


@pytest.fixture
def engine():
    """In-memory SQLite engine with every table created."""
    eng = create_engine("sqlite:///:memory:", echo=False)
    import marketplace_access.tables  # noqa: F401
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(autoflush=False, bind=engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def subscription_factory():
    return make_subscription
