"""Change notifications shared by the data service and the managers."""

from blinker import Signal


class FleetEvents:
    """
    Signals owned by one application shell and passed to every service.

    - data_changed(collection): a stored collection was written
    - maintenance_status_changed(car_id): a car entered or left service
    - storage_error(key, error): a read or write against storage failed
    - draft_saved(plan): the plan editor autosaved a draft
    """

    def __init__(self):
        self.data_changed = Signal("data-changed")
        self.maintenance_status_changed = Signal("maintenance-status-changed")
        self.storage_error = Signal("storage-error")
        self.draft_saved = Signal("draft-saved")
