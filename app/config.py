"""Configuration loading utilities for the video bridge service."""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".video_bridge_write_check"

MONGO_URI_ENV = "MONGO_URI"
PROVIDER_KEY_ENV = "DID_API_KEY"
DATABASE_ENV = "VIDEO_BRIDGE_DATABASE"
MAX_WAIT_ENV = "VIDEO_BRIDGE_MAX_WAIT_SECONDS"
POLL_INTERVAL_ENV = "VIDEO_BRIDGE_POLL_INTERVAL_SECONDS"
ALLOWED_ORIGINS_ENV = "VIDEO_BRIDGE_ALLOWED_ORIGINS"

DEFAULT_DATABASE_NAME = "professional"
DEFAULT_PROVIDER_BASE_URL = "https://api.d-id.com"
DEFAULT_PRESENTER_ID = "amy-jcwqj4g"


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The first writable candidate wins. The flag in the returned tuple tells
    whether a fallback was used. When nothing can be prepared the original
    ``preferred`` path is returned and the caller decides what to do.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


def _read_float(
    environ: Mapping[str, str], name: str, default: float
) -> float:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return float(default)
    try:
        value = float(raw)
    except ValueError:
        LOGGER.warning("Ignoring invalid value for %s: %r", name, raw)
        return float(default)
    if value < 0:
        LOGGER.warning("Ignoring negative value for %s: %r", name, raw)
        return float(default)
    return value


def _split_origins(raw: str) -> Tuple[str, ...]:
    return tuple(origin.strip() for origin in raw.split(",") if origin.strip())


@dataclass(frozen=True)
class AppConfig:
    """Resolved runtime settings handed to the service components."""

    storage_root: Path
    mongo_uri: Optional[str]
    provider_api_key: Optional[str]
    database_name: str = DEFAULT_DATABASE_NAME
    provider_base_url: str = DEFAULT_PROVIDER_BASE_URL
    presenter_id: str = DEFAULT_PRESENTER_ID
    poll_interval_seconds: float = 3.0
    max_wait_seconds: float = 600.0
    submit_timeout_seconds: float = 120.0
    poll_timeout_seconds: float = 30.0
    allowed_origins: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def log_file(self) -> Path:
        return self.storage_root / "video_bridge.log"

    def missing_secrets(self) -> Tuple[str, ...]:
        """Return the environment variable names whose values are absent."""

        missing = []
        if not self.mongo_uri:
            missing.append(MONGO_URI_ENV)
        if not self.provider_api_key:
            missing.append(PROVIDER_KEY_ENV)
        return tuple(missing)

    @classmethod
    def from_mapping(
        cls,
        mapping: Dict[str, Any],
        *,
        base_path: Path,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "AppConfig":
        env = os.environ if environ is None else environ

        preferred_storage = (base_path / mapping.get("storage_root", "storage")).resolve()
        storage_fallback = Path.home() / ".video_bridge" / "storage"
        storage_root, _ = _select_writable_directory(
            preferred_storage,
            label="storage",
            fallbacks=(storage_fallback,),
        )

        database_name = (
            (env.get(DATABASE_ENV) or "").strip()
            or str(mapping.get("database_name") or DEFAULT_DATABASE_NAME)
        )

        raw_origins = (env.get(ALLOWED_ORIGINS_ENV) or "").strip()
        if raw_origins:
            allowed_origins = _split_origins(raw_origins)
        else:
            allowed_origins = tuple(str(origin) for origin in mapping.get("allowed_origins", ()))

        return cls(
            storage_root=storage_root,
            mongo_uri=(env.get(MONGO_URI_ENV) or "").strip() or None,
            provider_api_key=(env.get(PROVIDER_KEY_ENV) or "").strip() or None,
            database_name=database_name,
            provider_base_url=str(
                mapping.get("provider_base_url") or DEFAULT_PROVIDER_BASE_URL
            ).rstrip("/"),
            presenter_id=str(mapping.get("presenter_id") or DEFAULT_PRESENTER_ID),
            poll_interval_seconds=_read_float(
                env, POLL_INTERVAL_ENV, mapping.get("poll_interval_seconds", 3.0)
            ),
            max_wait_seconds=_read_float(
                env, MAX_WAIT_ENV, mapping.get("max_wait_seconds", 600.0)
            ),
            submit_timeout_seconds=float(mapping.get("submit_timeout_seconds", 120.0)),
            poll_timeout_seconds=float(mapping.get("poll_timeout_seconds", 30.0)),
            allowed_origins=allowed_origins,
        )


def load_config(
    config_path: Path | None = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """Load the application configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=base_path, environ=environ)


__all__ = ["AppConfig", "load_config"]
