"""Environment configuration and storage provider selection."""

import logging
import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

import yaml

from .events import FleetEvents
from .remote import RemoteProvider
from .storage import LocalProvider, LocalStorage, StorageProvider

logger = logging.getLogger(__name__)

USE_BACKEND_KEY = "use_backend_override"
PLACEHOLDER_API_HOST = "your-api-domain.com"


@dataclass(frozen=True)
class AppConfig:
    """URLs and paths for one deployment environment."""

    environment: str
    marketing_url: str
    main_app_url: str
    api_url: str
    store_path: str = "fleet-store.yaml"


ENVIRONMENTS = {
    "development": AppConfig(
        "development",
        "http://localhost:3000",
        "http://localhost:3001",
        "http://localhost:8080/api",
    ),
    "staging": AppConfig("staging", "", "", ""),
    "production": AppConfig(
        "production",
        "https://martinmeer.github.io/my-car-tech-tracker-front",
        "https://martinmeer.github.io/my-car-tech-tracker-front/app",
        f"https://{PLACEHOLDER_API_HOST}/api",
    ),
}

# Keys accepted in a FLEET_CONFIG YAML file and their environment overrides
_FIELDS = {
    "marketing_url": "FLEET_MARKETING_URL",
    "main_app_url": "FLEET_MAIN_APP_URL",
    "api_url": "FLEET_API_URL",
    "store_path": "FLEET_STORE",
}


def load_config(environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """
    Build the configuration for the current environment.

    Order: built-in environment defaults (FLEET_ENV, default development),
    then the YAML file named by FLEET_CONFIG, then FLEET_* variables.
    """
    environ = os.environ if environ is None else environ
    env_name = environ.get("FLEET_ENV", "development")
    if env_name not in ENVIRONMENTS:
        raise ValueError(
            f"Unknown FLEET_ENV '{env_name}' (expected one of {sorted(ENVIRONMENTS)})"
        )
    config = ENVIRONMENTS[env_name]

    config_file = environ.get("FLEET_CONFIG")
    if config_file:
        with open(config_file) as f:
            overrides = yaml.safe_load(f) or {}
        unknown = set(overrides) - set(_FIELDS)
        if unknown:
            raise ValueError(f"Unknown config keys in {config_file}: {sorted(unknown)}")
        config = replace(config, **overrides)

    env_overrides = {
        field: environ[var] for field, var in _FIELDS.items() if environ.get(var)
    }
    if env_overrides:
        config = replace(config, **env_overrides)
    return config


def has_valid_api_url(config: AppConfig) -> bool:
    """A configured API URL that is neither a placeholder nor localhost."""
    url = config.api_url
    return bool(url) and PLACEHOLDER_API_HOST not in url and "localhost" not in url


def should_use_backend(config: AppConfig, storage: LocalStorage) -> bool:
    """
    Decide between the REST backend and local storage.

    Priority: stored override > production with a real API URL > local.
    """
    override = storage.get_item(USE_BACKEND_KEY)
    if override is not None:
        return override == "true"
    if config.environment == "production":
        return has_valid_api_url(config)
    return False


def set_backend_override(storage: LocalStorage, use_backend: Optional[bool]) -> None:
    """Force backend usage on or off, or clear the override with None."""
    if use_backend is None:
        storage.remove_item(USE_BACKEND_KEY)
        logger.info("Backend override cleared, using environment default")
    else:
        storage.set_item(USE_BACKEND_KEY, "true" if use_backend else "false")
        logger.info("Backend usage %s via override", "enabled" if use_backend else "disabled")


def create_provider(
    config: AppConfig,
    storage: LocalStorage,
    events: Optional[FleetEvents] = None,
) -> StorageProvider:
    """Select the storage provider once, at startup."""
    events = events or FleetEvents()
    if should_use_backend(config, storage):
        logger.info("Using REST backend at %s", config.api_url)
        return RemoteProvider(
            config.api_url,
            token=storage.get_item("auth_token"),
            csrf_token=storage.get_item("csrf_token"),
            events=events,
        )
    logger.debug("Using local storage")
    return LocalProvider(storage, events)
