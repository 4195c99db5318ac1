from pathlib import Path
from typing import Any

import pytest
from faker import Faker
from sqlalchemy.orm import Session, sessionmaker

from parcel_engine.core.exceptions import PersistenceError, UpstreamError
from parcel_engine.core.retry import RetryConfig
from parcel_engine.coupons.engine import CouponEngine
from parcel_engine.db.database import init_database
from parcel_engine.engine import OrderEngine
from parcel_engine.events.publisher import InMemoryEventPublisher
from parcel_engine.geo.distance import Coordinates
from parcel_engine.geo.routing import RouteResult
from parcel_engine.pricing.config import PricingConfig
from parcel_engine.pricing.config_store import PricingConfigStore
from tests.factories import LANGLEY, FrozenClock, OrderFactory, pricing_payload


class StubDistanceProvider:
    """Distance provider returning a fixed route, or raising a set error."""

    def __init__(self, route: RouteResult | None = None):
        self.route = route or RouteResult(distance_km=12.0, duration_minutes=25)
        self.error: UpstreamError | None = None
        self.calls: list[tuple[Coordinates, Coordinates]] = []

    def compute_route(self, pickup: Coordinates, dropoff: Coordinates) -> RouteResult:
        self.calls.append((pickup, dropoff))
        if self.error is not None:
            raise self.error
        return self.route


@pytest.fixture
def fixtures_dir() -> Path:
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def fake() -> Faker:
    """Seeded Faker instance for deterministic test data."""
    faker = Faker("en_CA")
    faker.seed_instance(42)
    return faker


@pytest.fixture
def order_factory() -> OrderFactory:
    return OrderFactory(seed=42)


@pytest.fixture
def payload() -> dict[str, Any]:
    return pricing_payload()


@pytest.fixture
def pricing_config(payload: dict[str, Any]) -> PricingConfig:
    return PricingConfig.model_validate(payload)


@pytest.fixture
def config_store(pricing_config: PricingConfig) -> PricingConfigStore:
    return PricingConfigStore.from_config(pricing_config)


@pytest.fixture
def session_maker(tmp_path: Path) -> sessionmaker[Session]:
    """File-backed SQLite so concurrent sessions see each other's commits."""
    return init_database(str(tmp_path / "engine.db"))


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def distance_provider() -> StubDistanceProvider:
    return StubDistanceProvider()


@pytest.fixture
def publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture
def coupon_engine(session_maker: sessionmaker[Session], clock: FrozenClock) -> CouponEngine:
    return CouponEngine(
        session_maker,
        clock=clock,
        usage_retry=RetryConfig(
            max_attempts=2, base_delay=0.0, retryable_exceptions=(PersistenceError,)
        ),
    )


@pytest.fixture
def engine(
    session_maker: sessionmaker[Session],
    config_store: PricingConfigStore,
    distance_provider: StubDistanceProvider,
    coupon_engine: CouponEngine,
    publisher: InMemoryEventPublisher,
    clock: FrozenClock,
) -> OrderEngine:
    return OrderEngine(
        session_maker,
        config_store,
        distance_provider,
        coupon_engine=coupon_engine,
        event_publisher=publisher,
        clock=clock,
    )


@pytest.fixture
def place_order(engine: OrderEngine, order_factory: OrderFactory):
    """Create an order through the engine, optionally paying for it."""

    def _place(
        user_id: str = "user-1",
        paid: bool = True,
        size: str = "S",
        coupon_code: str | None = None,
        pickup: Coordinates | None = None,
        dropoff: Coordinates | None = None,
    ):
        order = engine.create_order(
            pickup=order_factory.stop(pickup) if pickup else order_factory.stop(),
            dropoff=order_factory.stop(dropoff) if dropoff else order_factory.stop(LANGLEY),
            package=order_factory.package(size),
            owner_id=user_id,
            coupon_code=coupon_code,
        )
        if paid:
            order = engine.mark_paid(order.order_id)
        return order

    return _place
