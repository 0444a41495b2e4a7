"""
Service runner and logging setup.

Services:
    monitor_engine: Runs persisted monitors against the feature store

Each service subclasses ServiceRunner and implements the
``_initialize``/``_run``/``_cleanup`` hooks. The runner loads the
configuration, connects Redis, installs signal handlers and guarantees
cleanup on exit.

Example:
    >>> class MyService(ServiceRunner):
    ...     @property
    ...     def service_name(self) -> str:
    ...         return "my-service"
    ...     async def _run(self) -> None:
    ...         await self.shutdown_event.wait()
    >>> await MyService("config").run()
"""

import asyncio
import logging
import os
import signal
from typing import Optional

import structlog

from geosentinel.config import AppConfig, ConfigLoader, LogFormat
from geosentinel.storage.redis_client import RedisClient


def setup_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Configure structured logging.

    Args:
        level: Log level name. Defaults to LOG_LEVEL or INFO.
        log_format: "json" or "text". Defaults to json.
    """
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    renderer = (
        structlog.dev.ConsoleRenderer()
        if log_format == LogFormat.TEXT.value
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level, logging.INFO),
        force=True,
    )

    # aiohttp access and client logs are noisy at INFO
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


class ServiceRunner:
    """
    Base class for long-running services.

    Attributes:
        config_path: Directory holding settings.yaml.
        config: Loaded configuration, set during startup.
        redis_client: Connected Redis client, set during startup.
        shutdown_event: Set to request a graceful shutdown.
    """

    def __init__(self, config_path: str = "config") -> None:
        self.config_path = config_path
        self.config: Optional[AppConfig] = None
        self.redis_client: Optional[RedisClient] = None
        self.shutdown_event = asyncio.Event()
        self.logger = structlog.get_logger(self.service_name)

    @property
    def service_name(self) -> str:
        """Return service name."""
        return "service"

    def request_shutdown(self) -> None:
        """Ask the service to stop."""
        if not self.shutdown_event.is_set():
            self.logger.info("shutdown_requested")
            self.shutdown_event.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform or outside the main thread
                self.logger.debug("signal_handler_unavailable", signal=sig.name)

    async def _startup(self) -> None:
        self.config = ConfigLoader(self.config_path).load()
        setup_logging(self.config.logging.level.value, self.config.logging.format.value)

        self.redis_client = RedisClient(self.config.redis)
        await self.redis_client.connect()

    async def _shutdown(self) -> None:
        if self.redis_client is not None:
            await self.redis_client.disconnect()

    async def _initialize(self) -> None:
        """Service-specific initialization."""

    async def _run(self) -> None:
        """Service main loop. Defaults to waiting for shutdown."""
        await self.shutdown_event.wait()

    async def _cleanup(self) -> None:
        """Service-specific cleanup."""

    async def run(self) -> None:
        """
        Run the service until shutdown.

        Cleanup hooks run even when initialization or the main loop fails;
        the failure is re-raised afterwards.
        """
        self._install_signal_handlers()
        self.logger.info("service_starting", config_path=self.config_path)

        try:
            await self._startup()
            await self._initialize()
            self.logger.info("service_started")
            await self._run()
        finally:
            try:
                await self._cleanup()
            finally:
                await self._shutdown()
                self.logger.info("service_stopped")
