"""
Lifecycle Manager Module

The one lifecycle object of the process. It is constructed once at startup
and handed by reference to everything that registers cleanup or acquires
resources (the server entry point, middlewares, route dependencies).

Holds:
    - config: Active AppConfig
    - logger: Root structured logger
    - orchestrator: ShutdownOrchestrator
    - signals: SignalListener feeding the orchestrator
    - logger_cache: ResourceCache for structured loggers (always replace)
    - database_cache: ResourceCache for the database handle
      (drift policy from config / deployment mode)
    - active_requests: In-flight request counter used while draining
"""

import time
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping, Optional

from ..core.config import AppConfig, DatabaseConfig, DriftPolicy, refresh_config
from ..core.database import Database, DatabaseSpec, build_database
from ..core.logger import Logger, create_logger
from .cache import AcquireOutcome, ResourceCache, ResourceFingerprint
from .shutdown import CleanupHook, ShutdownOrchestrator, Terminator, hard_exit
from .signals import SignalListener


logger = logging.getLogger(__name__)


SERVICE_NAME = "plaid-api"
DRAIN_POLL_INTERVAL = 0.1

DatabaseFactory = Callable[[DatabaseSpec], Awaitable[Database]]


@dataclass(frozen=True)
class LoggerSpec:
    """Inputs that decide how a structured logger is built."""
    environment: str
    service: str = SERVICE_NAME


class LifecycleManager:
    """
    Process lifecycle and resource owner.

    Args:
        config: Active configuration (runtime capabilities resolved)
        terminate: Process exit function used by the orchestrator
        database_factory: Builds a database handle from a DatabaseSpec
        environ: Environment re-read by refresh_config (defaults to os.environ)
    """

    def __init__(
        self,
        config: AppConfig,
        terminate: Terminator = hard_exit,
        database_factory: DatabaseFactory = build_database,
        environ: Optional[Mapping[str, str]] = None
    ):
        self._environ = environ
        self.logger = create_logger(
            config.runtime.environment,
            {"service": SERVICE_NAME}
        )
        self.orchestrator = ShutdownOrchestrator(self.logger, terminate=terminate)
        self.signals = SignalListener(self.orchestrator)

        self._database_factory = database_factory
        self.logger_cache = ResourceCache(
            "logger",
            self._build_logger,
            DriftPolicy.REPLACE
        )
        self.database_cache = ResourceCache(
            "database",
            self._build_database,
            config.database.effective_drift_policy(config.runtime)
        )

        self.active_requests = 0
        self.started_at = time.time()
        self.apply_config(config)

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def apply_config(self, config: AppConfig) -> None:
        """
        Make a new configuration active.

        Fingerprints are derived here, once per configuration. The next
        acquire under the new fingerprints goes through the drift policy,
        which is itself taken from the new configuration.
        """
        policy = config.database.effective_drift_policy(config.runtime)
        if policy is not self.database_cache.drift_policy:
            logger.info(
                f"Database drift policy changed: "
                f"{self.database_cache.drift_policy.value} -> {policy.value}"
            )
            self.database_cache.drift_policy = policy

        self.config = config
        self._logger_fingerprint = self.logger_fingerprint(config)
        self._database_fingerprint = self.database_fingerprint(config.database)

    def refresh_config(self) -> bool:
        """
        Re-read environment overrides and apply them if anything changed.

        Called once per request, so a rotated DATABASE_URL reaches the
        database cache's drift policy on the next acquire.

        Returns:
            True if a changed configuration was applied

        Raises:
            ConfigurationError: If the environment holds invalid values
        """
        refreshed = refresh_config(self.config, self._environ)
        if refreshed == self.config:
            return False

        logger.info("Configuration changed in the environment, applying")
        self.apply_config(refreshed)
        return True

    @staticmethod
    def logger_fingerprint(config: AppConfig) -> ResourceFingerprint:
        spec = LoggerSpec(environment=config.runtime.environment)
        return ResourceFingerprint.derive("logger", spec, spec.environment)

    def database_fingerprint(self, database: DatabaseConfig) -> ResourceFingerprint:
        spec = DatabaseSpec.from_config(database, self.config.runtime)
        return ResourceFingerprint.derive("database", spec, spec.label)

    # -------------------------------------------------------------------------
    # Resources
    # -------------------------------------------------------------------------

    async def acquire_logger(self) -> AcquireOutcome:
        return await self.logger_cache.acquire(self._logger_fingerprint)

    async def acquire_database(
        self,
        database: Optional[DatabaseConfig] = None
    ) -> AcquireOutcome:
        """
        Acquire the database handle for the active (or given) configuration.

        Returns a Conflict outcome when the fingerprint drifted and the
        database drift policy is fail_fast.
        """
        if database is None:
            fingerprint = self._database_fingerprint
        else:
            fingerprint = self.database_fingerprint(database)
        return await self.database_cache.acquire(fingerprint)

    def _build_logger(self, fingerprint: ResourceFingerprint) -> Logger:
        spec: LoggerSpec = fingerprint.spec
        return create_logger(spec.environment, {"service": spec.service})

    async def _build_database(self, fingerprint: ResourceFingerprint) -> Database:
        return await self._database_factory(fingerprint.spec)

    async def release_resources(self) -> None:
        """Close the cached database handle and drop the cached logger."""
        await self.database_cache.release()
        await self.logger_cache.release()

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    @property
    def accepting_work(self) -> bool:
        return self.orchestrator.accepting_work

    def register(self, cleanup: CleanupHook, deadline_ms: Optional[int] = None) -> None:
        """Register the shutdown cleanup hook (deadline defaults to config)."""
        if deadline_ms is None:
            deadline_ms = self.config.shutdown.deadline_ms
        self.orchestrator.register(cleanup, deadline_ms=deadline_ms)

    def install_signals(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self.signals.install(loop)

    def uninstall_signals(self) -> None:
        self.signals.uninstall()

    # -------------------------------------------------------------------------
    # Request tracking
    # -------------------------------------------------------------------------

    def request_started(self) -> int:
        self.active_requests += 1
        return self.active_requests

    def request_finished(self) -> int:
        self.active_requests = max(0, self.active_requests - 1)
        return self.active_requests

    async def drain(self, timeout: float) -> bool:
        """
        Wait for in-flight requests to finish.

        Returns:
            True if no request is active, False if the timeout was reached
        """
        start_time = time.monotonic()

        while self.active_requests > 0:
            if time.monotonic() - start_time >= timeout:
                logger.warning(
                    f"Drain timeout reached with "
                    f"{self.active_requests} requests still active"
                )
                return False
            await asyncio.sleep(DRAIN_POLL_INTERVAL)

        return True
