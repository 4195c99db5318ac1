"""Parcel Engine - expiry sweeper entry point

Wires settings, logging, the database, the pricing config store and the
routing client into an OrderEngine, then runs the expiry sweep on a timer
until SIGINT/SIGTERM. SIGHUP reloads the pricing config from disk.
"""

import argparse
import logging
import signal
import sys
import threading

from .core.exceptions import EngineError
from .core.retry import RetryConfig
from .coupons.engine import CouponEngine
from .db.database import init_database
from .engine import OrderEngine
from .events.publisher import LoggingEventPublisher
from .geo.route_cache import CachingDistanceProvider
from .geo.routing import OSRMDistanceProvider
from .parcel_logging import setup_logging
from .pricing.config_store import PricingConfigStore
from .settings import Settings, get_settings
from .sweeper import ExpirySweeper

logger = logging.getLogger(__name__)


def build_engine(settings: Settings) -> OrderEngine:
    """Create an OrderEngine from settings."""
    session_maker = init_database(settings.database.url, echo=settings.database.echo)

    config_store = PricingConfigStore.from_file(settings.pricing.config_path)
    active = config_store.get_active()
    logger.info(f"Pricing config v{active.version} active (checksum {active.checksum[:12]})")

    routing = settings.routing
    provider = OSRMDistanceProvider(
        routing.base_url,
        timeout=routing.timeout_seconds,
        retry_config=RetryConfig(
            max_attempts=routing.max_retries,
            base_delay=routing.retry_base_delay,
            multiplier=routing.retry_multiplier,
        ),
    )
    logger.info(f"OSRM client configured: {routing.base_url}")

    return OrderEngine(
        session_maker,
        config_store,
        CachingDistanceProvider(provider, maxsize=routing.cache_size),
        coupon_engine=CouponEngine(session_maker),
        event_publisher=LoggingEventPublisher(),
        order_expiry_minutes=settings.engine.order_expiry_minutes,
        expiring_soon_minutes=settings.engine.expiring_soon_minutes,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="parcel-engine-sweeper", description=__doc__)
    parser.add_argument("--once", action="store_true", help="run a single sweep and exit")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main entry point - runs the expiry sweeper until signalled."""
    args = parse_args(argv)
    settings = get_settings()

    setup_logging(
        level=settings.engine.log_level,
        json_output=settings.engine.log_format == "json",
        environment=settings.engine.environment,
    )

    try:
        engine = build_engine(settings)
    except EngineError as e:
        logger.error(f"Startup failed: {e}")
        return 1

    sweeper = ExpirySweeper(engine, interval_seconds=settings.engine.sweep_interval_seconds)

    if args.once:
        cancelled = sweeper.run_once()
        logger.info(f"Single sweep cancelled {cancelled} orders")
        return 0

    stopped = threading.Event()

    def shutdown_handler(signum: int, frame: object) -> None:
        logger.info(f"Received signal {signum}, shutting down...")
        stopped.set()

    def reload_handler(signum: int, frame: object) -> None:
        try:
            version = engine.config_store.reload()
            logger.info(f"Pricing config reloaded: v{version.version}")
        except EngineError as e:
            logger.error(f"Pricing config reload failed, keeping current version: {e}")

    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, reload_handler)

    sweeper.start()
    while not stopped.wait(1.0):
        pass
    sweeper.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
