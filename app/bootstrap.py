"""Bootstrap logic that validates runtime settings before the service starts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List

from . import config as config_module
from .config import AppConfig, load_config
from .services.generation import VideoGenerationOrchestrator
from .services.provider import TalksClient
from .services.records import RecordWriter
from .services.resolver import RecordResolver
from .services.store import MongoDocumentStore

LOGGER = logging.getLogger(__name__)


class BootstrapError(RuntimeError):
    """Raised when initialization cannot be completed."""


class Bootstrapper:
    """High level object orchestrating initialization steps."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def config(self) -> AppConfig:
        return self._config

    def initialize(self) -> None:
        """Run all bootstrap tasks."""

        LOGGER.debug("Starting bootstrap sequence")
        self._ensure_directories()
        self._ensure_secrets()
        LOGGER.info("Bootstrap completed successfully")

    def _ensure_directories(self) -> None:
        storage_root = self._config.storage_root
        if not config_module._ensure_writable_directory(storage_root):
            raise BootstrapError(f"Storage directory '{storage_root}' is not writable")
        LOGGER.debug("Ensured directory exists: %s", storage_root)

    def _ensure_secrets(self) -> None:
        missing = self._config.missing_secrets()
        if missing:
            names = ", ".join(missing)
            LOGGER.error("Missing required environment variables: %s", names)
            raise BootstrapError(f"Missing required environment variables: {names}")
        LOGGER.debug(
            "Using database '%s' and provider '%s'",
            self._config.database_name,
            self._config.provider_base_url,
        )


@dataclass
class ServiceBundle:
    """Long-lived collaborators shared by every request."""

    store: MongoDocumentStore
    provider: TalksClient
    orchestrator: VideoGenerationOrchestrator
    resolver: RecordResolver
    writer: RecordWriter

    @property
    def closers(self) -> List[Any]:
        return [self.provider, self.store]

    async def aclose(self) -> None:
        await self.provider.aclose()
        await self.store.close()


def build_services(config: AppConfig) -> ServiceBundle:
    """Construct the store and provider clients once and wire the services around them."""

    if config.missing_secrets():
        raise BootstrapError(
            "Missing required environment variables: " + ", ".join(config.missing_secrets())
        )
    store = MongoDocumentStore.from_uri(config.mongo_uri, config.database_name)
    provider = TalksClient(
        config.provider_base_url,
        config.provider_api_key,
        submit_timeout=config.submit_timeout_seconds,
        poll_timeout=config.poll_timeout_seconds,
    )
    orchestrator = VideoGenerationOrchestrator(
        provider,
        presenter_id=config.presenter_id,
        poll_interval=config.poll_interval_seconds,
        max_wait=config.max_wait_seconds,
    )
    return ServiceBundle(
        store=store,
        provider=provider,
        orchestrator=orchestrator,
        resolver=RecordResolver(store),
        writer=RecordWriter(store),
    )


def initialize_app(config_path: Path | None = None) -> AppConfig:
    """Convenience helper that loads configuration and runs initialization."""

    config = load_config(config_path=config_path)
    bootstrapper = Bootstrapper(config)
    bootstrapper.initialize()
    return config


__all__ = ["BootstrapError", "Bootstrapper", "ServiceBundle", "build_services", "initialize_app"]
