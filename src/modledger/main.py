"""
Moderation Ledger Service
=========================

Composition root: builds the store, the escalation engine, the action
processor, the appeal workflow, statistics and the expiry scheduler once,
wires them together explicitly, and keeps them running until interrupted.
Host applications embed the engine by calling :func:`build_services` with
their own collaborators.
"""

import os
import sys
from pathlib import Path


def resolve_base_dir() -> Path:
    """Determine the base directory of the project.

    Resolution order:
    1. MODLEDGER_HOME environment variable, if set.
    2. If running in a frozen/compiled context, use the executable's directory.
    3. Otherwise, assume running from source and use the grandparent of this file's directory.
    """
    if env_home := os.getenv("MODLEDGER_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]


import asyncio
import signal
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from modledger.configuration.app_configuration import AppConfig, resolve_config_path
from modledger.database.database import ModerationDatabase
from modledger.moderation.action_processor import ActionProcessor
from modledger.moderation.appeal_workflow import AppealWorkflow
from modledger.moderation.collaborators import (
    DirectoryIdentityResolver,
    EffectApplier,
    IdentityResolver,
    LoggingEffectApplier,
    RankProvider,
    StaticRankProvider,
)
from modledger.moderation.escalation_policy import EscalationPolicyEngine
from modledger.moderation.statistics import StatisticsService
from modledger.repositories.moderation_repo import SqliteModerationRepository
from modledger.scheduler.expiry_scheduler import ExpiryScheduler
from modledger.util.logger import get_logger, handle_exception
from modledger.util.time_utils import Clock, utcnow

logger = get_logger("main")


@dataclass
class Services:
    """Every long-lived engine object, built once per process."""

    config: AppConfig
    database: ModerationDatabase
    repository: SqliteModerationRepository
    escalation: EscalationPolicyEngine
    processor: ActionProcessor
    appeals: AppealWorkflow
    statistics: StatisticsService
    scheduler: ExpiryScheduler


def load_environment(base_dir: Path) -> None:
    """Load ``.env`` from the base directory into the process environment."""
    load_dotenv(dotenv_path=base_dir / ".env")


async def build_services(
    config: AppConfig,
    *,
    effects: Optional[EffectApplier] = None,
    rank_provider: Optional[RankProvider] = None,
    identity: Optional[IdentityResolver] = None,
    clock: Clock = utcnow,
) -> Services:
    """
    Open the store and construct the engine.

    Collaborators default to the logging-only effect applier, the rank
    table from the ``staff`` config section and an empty name directory.

    Raises:
        StorageError: If the database cannot be opened.
        ValidationError: If the escalation configuration is inconsistent.
    """
    db_settings = config.database
    database = ModerationDatabase(
        db_settings.path,
        timeout_seconds=db_settings.timeout_seconds,
        slow_query_ms=db_settings.slow_query_ms,
        cache_ttl_seconds=config.statistics.cache_ttl_seconds,
    )
    await database.initialize()

    effects = effects or LoggingEffectApplier()
    rank_provider = rank_provider or StaticRankProvider(config.staff.ranks)
    identity = identity or DirectoryIdentityResolver()

    repository = SqliteModerationRepository(database.connection, database.perf_monitor, clock=clock)
    escalation = EscalationPolicyEngine(
        repository,
        rank_provider,
        policy=config.escalation.policy(),
        clock=clock,
        enabled=config.escalation.enabled,
    )
    scheduler = ExpiryScheduler(effects, repository, clock=clock)
    action_settings = config.actions
    processor = ActionProcessor(
        repository,
        escalation,
        rank_provider,
        effects,
        identity=identity,
        scheduler=scheduler,
        clock=clock,
        conflict_retries=action_settings.conflict_retries,
        protect_staff=action_settings.protect_staff,
        required_ranks=action_settings.required_ranks,
    )
    appeals = AppealWorkflow(
        processor,
        deadline_days=config.appeals.deadline_days,
        max_open_per_target=config.appeals.max_open_per_target,
    )
    statistics = StatisticsService(
        repository,
        database.cache,
        engine=escalation,
        history_limit=config.statistics.history_limit,
        clock=clock,
    )

    return Services(
        config=config,
        database=database,
        repository=repository,
        escalation=escalation,
        processor=processor,
        appeals=appeals,
        statistics=statistics,
        scheduler=scheduler,
    )


async def shutdown_services(services: Services) -> None:
    """Stop the scheduler, then close the store."""
    try:
        await services.scheduler.shutdown()
    except Exception as exc:
        logger.exception("Error during scheduler shutdown: %s", exc)

    logger.debug("Query statistics:\n%s", services.database.perf_monitor.get_summary())
    await services.database.shutdown()
    logger.info("Shutdown complete.")


async def async_main() -> int:
    """Build the engine, restore pending expiries and wait for a stop signal."""
    config = AppConfig(resolve_config_path())

    try:
        services = await build_services(config)
    except Exception as exc:
        logger.critical("Failed to initialize the moderation ledger: %s", exc)
        return 1

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            logger.debug("Signal handler for %s not supported on this platform", sig)

    try:
        await services.scheduler.restore(services.repository)
        logger.info("Moderation ledger ready (database: %s)", services.database.db_path)
        await stop.wait()
        logger.info("Stop requested.")
    finally:
        await shutdown_services(services)
    return 0


def main() -> int:
    """Entrypoint that runs the async service and returns the process exit code."""
    base_dir = resolve_base_dir()
    os.chdir(base_dir)
    load_environment(base_dir)

    logger.info("Starting moderation ledger…")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except Exception as exc:
        logger.critical("An unexpected error occurred while running the ledger: %s", exc)
        return 1


if __name__ == "__main__":
    sys.excepthook = handle_exception
    sys.exit(main())
