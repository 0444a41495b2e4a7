"""
Monitor Engine service entry point.

This service is responsible for:
- Waiting for the feature store (layer provider) to become ready
- Starting every enabled persisted monitor exactly once
- Running scheduled monitors on their cron expression
- Running event monitors on matching feature store changes
- Dispatching actions and publishing status events on Redis

Usage:
    geosentinel-engine
    python -m geosentinel.services.monitor_engine

Environment Variables:
    REDIS_URL: Redis connection URL (default: redis://localhost:6379)
    LAYER_PROVIDER_URL: Feature store base URL
    LOG_LEVEL: Logging level (default: INFO)
    CONFIG_PATH: Path to config directory (default: config)
"""

import asyncio
import os
import sys
from typing import Optional

import structlog

from geosentinel import __version__
from geosentinel.detection import (
    EvaluationEngine,
    MonitorLifecycle,
    MonitorRegistry,
    MonitorRunner,
    StatusEventBus,
    create_dispatcher,
)
from geosentinel.detection.channels import AiohttpSender
from geosentinel.providers import HttpLayerProvider, LayerResolver, RedisChangeFeed
from geosentinel.services import ServiceRunner, setup_logging
from geosentinel.storage import RedisMonitorRepository

logger = structlog.get_logger(__name__)


class MonitorEngineFatalError(RuntimeError):
    """Raised when a run failed in a way the engine cannot recover from."""


class MonitorEngineService(ServiceRunner):
    """
    Monitor engine service.

    Attributes:
        provider: Feature store client.
        change_feed: Change events over Redis pub/sub.
        sender: HTTP sender shared by action channels.
        registry: Active monitor registry.
        lifecycle: Lifecycle callbacks for monitor documents.
    """

    def __init__(self, config_path: str = "config") -> None:
        """Initialize the monitor engine service."""
        super().__init__(config_path)
        self.provider: Optional[HttpLayerProvider] = None
        self.change_feed: Optional[RedisChangeFeed] = None
        self.sender: Optional[AiohttpSender] = None
        self.registry: Optional[MonitorRegistry] = None
        self.lifecycle: Optional[MonitorLifecycle] = None
        self._fatal_error: Optional[BaseException] = None

    @property
    def service_name(self) -> str:
        """Return service name."""
        return "monitor-engine"

    def _on_fatal(self, error: BaseException) -> None:
        self.logger.critical(
            "monitor_engine_fatal_error",
            error=str(error),
            error_type=type(error).__name__,
        )
        if self._fatal_error is None:
            self._fatal_error = error
        self.request_shutdown()

    async def _initialize(self) -> None:
        """Wire the engine components."""
        if self.config is None or self.redis_client is None:
            raise RuntimeError("Service not properly initialized")

        self.provider = HttpLayerProvider(
            self.config.layer_provider,
            user_agent=self.config.actions.user_agent,
        )
        resolver = LayerResolver(self.provider)
        self.change_feed = RedisChangeFeed(self.redis_client)
        repository = RedisMonitorRepository(self.redis_client)

        self.sender = AiohttpSender(
            timeout_seconds=self.config.actions.timeout_seconds,
            user_agent=self.config.actions.user_agent,
        )
        runner = MonitorRunner(
            engine=EvaluationEngine(resolver),
            dispatcher=create_dispatcher(self.sender),
            repository=repository,
            events=StatusEventBus(self.redis_client),
        )
        self.registry = MonitorRegistry(
            runner=runner,
            resolver=resolver,
            change_feed=self.change_feed,
            allowed_events=self.config.engine.allowed_events,
            max_event_services=self.config.engine.max_event_services,
            fatal_handler=self._on_fatal,
        )
        self.lifecycle = MonitorLifecycle(
            repository=repository,
            runner=runner,
            registry=self.registry,
            default_cooldown_seconds=self.config.engine.default_cooldown_seconds,
        )

        self.logger.info(
            "engine_components_initialized",
            layer_provider=self.config.layer_provider.base_url,
            max_event_services=self.config.engine.max_event_services,
        )

    async def _wait_until_ready(self) -> bool:
        """Poll the layer provider until it is ready or shutdown is requested."""
        if self.config is None or self.provider is None:
            return False

        interval = self.config.layer_provider.ready_poll_seconds
        while not self.shutdown_event.is_set():
            if await self.provider.is_ready():
                self.logger.info("layer_provider_ready")
                return True
            self.logger.info("layer_provider_not_ready", retry_in_seconds=interval)
            try:
                await asyncio.wait_for(self.shutdown_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
        return False

    async def _run(self) -> None:
        """Start persisted monitors and wait for shutdown."""
        if self.lifecycle is None:
            raise RuntimeError("Service not properly initialized")

        if not await self._wait_until_ready():
            return

        started = await self.lifecycle.start_existing()
        self.logger.info("engine_running", active_monitors=started)

        await self.shutdown_event.wait()

        if self._fatal_error is not None:
            raise MonitorEngineFatalError(str(self._fatal_error)) from self._fatal_error

    async def _cleanup(self) -> None:
        """Stop monitors and close network resources."""
        if self.registry is not None:
            await self.registry.close()
        if self.change_feed is not None:
            await self.change_feed.close()
        if self.sender is not None:
            await self.sender.close()
        if self.provider is not None:
            await self.provider.close()


async def main() -> None:
    """Main entry point."""
    setup_logging()

    config_path = os.getenv("CONFIG_PATH", "config")

    logger.info(
        "monitor_engine_service_starting",
        version=__version__,
        config_path=config_path,
    )

    service = MonitorEngineService(config_path=config_path)

    try:
        await service.run()
    except Exception as e:
        logger.error("service_failed", error=str(e))
        sys.exit(1)


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
