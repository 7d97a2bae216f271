"""Composition of the services one application shell works with."""

from typing import Optional

from .alerts import AlertManager
from .config import AppConfig, create_provider
from .data_service import DataService
from .events import FleetEvents
from .planner import PlanBuilder
from .shops import ShopManager
from .storage import LocalProvider, LocalStorage, StorageProvider


class Fleet:
    """Data service and managers sharing one provider and one set of events."""

    def __init__(self, provider: StorageProvider, events: Optional[FleetEvents] = None):
        self.events = events or FleetEvents()
        self.provider = provider
        self.data = DataService(provider, self.events)
        self.alerts = AlertManager(self.data)
        self.planner = PlanBuilder(self.data, self.alerts)
        self.shops = ShopManager(self.data)


def open_fleet(
    config: AppConfig,
    storage: Optional[LocalStorage] = None,
    events: Optional[FleetEvents] = None,
) -> Fleet:
    """
    Open the configured store, choosing the provider once.

    Legacy keys in a local store are migrated on open.
    """
    events = events or FleetEvents()
    storage = storage if storage is not None else LocalStorage(config.store_path)
    provider = create_provider(config, storage, events)
    if isinstance(provider, LocalProvider):
        provider.migrate_legacy_keys()
    return Fleet(provider, events)
