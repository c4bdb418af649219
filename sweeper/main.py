#!/usr/bin/env python3
"""
Chain sweeper process entry point
"""

import logging
import signal
import sys

from db.connection import create_tables, make_engine, make_session_factory
from db.ledger import Ledger
from shared.crypto.clients.registry import default_registry
from shared.crypto.credentials import CredentialCipher, CredentialResolver
from shared.logger import setup_logging
from shared.notification_service import NotificationService
from sweeper.dispatcher import Dispatcher
from sweeper.retry import RetryPolicy
from sweeper.scheduler import SweepScheduler
from sweeper.service import SweepService
from sweeper.settings import MissingSettingsError, SweeperSettings
from sweeper.setup_flow import SessionStore, SetupFlow

logger = logging.getLogger("sweeper")


def build_scheduler(settings: SweeperSettings) -> SweepScheduler:
    engine = make_engine(settings.database_url)
    create_tables(engine)
    ledger = Ledger(make_session_factory(engine))

    service = SweepService(
        registry=default_registry(settings),
        resolver=CredentialResolver(btc_testnet=settings.btc_testnet),
        cipher=CredentialCipher(settings.app_secret),
        ledger=ledger,
        notifier=NotificationService(
            redis_host=settings.redis_host,
            redis_port=settings.redis_port,
            channel=settings.notification_channel,
        ),
    )
    return SweepScheduler(
        service,
        ledger,
        interval_seconds=settings.sweep_interval_seconds,
        max_workers=settings.sweep_max_workers,
        policy=RetryPolicy(max_retries=settings.sweep_max_retries, base_delay=settings.sweep_retry_base_delay),
        notify_on_give_up=settings.notify_on_give_up,
    )


def build_dispatcher(settings: SweeperSettings, service: SweepService) -> Dispatcher:
    """Command dispatcher for a chat transport, sharing the scheduler's service."""
    registry = service.registry

    def address_validator(chain, address: str) -> bool:
        return chain in registry and registry.get(chain).validate_address(address)

    return Dispatcher(
        ledger=service.ledger,
        service=service,
        sessions=SessionStore(ttl_seconds=settings.setup_session_ttl),
        flow=SetupFlow(service.resolver, address_validator),
        cipher=service.cipher,
    )


def main():
    """Main function to run the sweeper"""
    setup_logging()
    try:
        settings = SweeperSettings.from_env()
    except MissingSettingsError as e:
        logger.error(str(e))
        return 1
    setup_logging(log_dir=settings.log_dir)

    logger.info("🕐 Chain sweeper starting")
    scheduler = build_scheduler(settings)

    def shutdown(signum, frame):
        logger.info(f"Received signal {signal.Signals(signum).name}, shutting down")
        scheduler.stop(grace_period=settings.sweep_shutdown_grace_seconds)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        scheduler.run()
    finally:
        scheduler.stop(grace_period=settings.sweep_shutdown_grace_seconds)
        logger.info("🕐 Chain sweeper stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
