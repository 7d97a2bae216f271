"""REST-backed storage provider."""

import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from .errors import BackendError, FleetError, NotFoundError
from .events import FleetEvents
from .storage import (
    ALERTS,
    CARS,
    MAINTENANCE,
    MILEAGE,
    PLANS,
    SERVICE_RECORDS,
    SHOPS,
    StorageProvider,
)

logger = logging.getLogger(__name__)

ENDPOINTS = {
    CARS: "/cars",
    ALERTS: "/alerts",
    MAINTENANCE: "/maintenance",
    PLANS: "/maintenance-plans",
    SHOPS: "/service-shops",
    SERVICE_RECORDS: "/service-records",
    MILEAGE: "/mileage",
}

REQUEST_TIMEOUT = 30


class RemoteProvider(StorageProvider):
    """
    Provider talking to the fleet REST API.

    Every request carries the bearer token and CSRF header. Failures are
    wrapped in BackendError and never retried.
    """

    def __init__(
        self,
        api_url: str,
        token: Optional[str] = None,
        csrf_token: Optional[str] = None,
        events: Optional[FleetEvents] = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.csrf_token = csrf_token
        self.events = events or FleetEvents()
        self.session = session or requests.Session()

    @property
    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self.csrf_token:
            headers["X-CSRF-Token"] = self.csrf_token
        return headers

    def _request(self, method: str, path: str, payload: Any = None) -> Any:
        url = f"{self.api_url}{path}"
        try:
            response = self.session.request(
                method, url, json=payload, headers=self.headers, timeout=REQUEST_TIMEOUT
            )
        except requests.RequestException as e:
            logger.error("API call %s %s failed: %s", method, url, e)
            raise BackendError(f"Could not reach the server: {e}") from e

        if response.status_code == 404:
            raise NotFoundError(f"{method} {path}: not found")
        if not response.ok:
            logger.error("API call %s %s returned %s", method, url, response.status_code)
            raise BackendError(
                f"Server error {response.status_code}: {response.reason}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise BackendError(f"Invalid response from server: {e}") from e

    def _endpoint(self, collection: str) -> str:
        try:
            return ENDPOINTS[collection]
        except KeyError:
            raise ValueError(f"Unknown collection '{collection}'") from None

    def _changed(self, collection: str) -> None:
        self.events.data_changed.send(self, collection=collection)

    def load(self, collection: str) -> List[Dict[str, Any]]:
        return self._request("GET", self._endpoint(collection)) or []

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self._request("GET", f"{self._endpoint(collection)}/{record_id}")
        except NotFoundError:
            return None

    def insert(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        created = self._request("POST", self._endpoint(collection), record)
        self._changed(collection)
        return created or record

    def update(
        self, collection: str, record_id: str, changes: Dict[str, Any]
    ) -> Dict[str, Any]:
        updated = self._request(
            "PUT", f"{self._endpoint(collection)}/{record_id}", changes
        )
        self._changed(collection)
        return updated

    def upsert(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return self.update(collection, record["id"], record)
        except NotFoundError:
            return self.insert(collection, record)

    def delete(self, collection: str, record_id: str) -> None:
        self._request("DELETE", f"{self._endpoint(collection)}/{record_id}")
        self._changed(collection)

    def delete_where(self, collection: str, field: str, value: Any) -> int:
        if collection == MAINTENANCE and field == "carId":
            result = self._request("DELETE", f"/maintenance/car/{value}") or {}
            self._changed(collection)
            return result.get("removed", 0)
        matching = [r for r in self.load(collection) if r.get(field) == value]
        for record in matching:
            self.delete(collection, record["id"])
        return len(matching)

    def load_blob(self, key: str) -> Optional[Any]:
        try:
            return self._request("GET", f"/blobs/{key}")
        except NotFoundError:
            return None

    def save_blob(self, key: str, value: Any) -> None:
        self._request("PUT", f"/blobs/{key}", value)

    def remove_blob(self, key: str) -> None:
        try:
            self._request("DELETE", f"/blobs/{key}")
        except NotFoundError:
            pass

    def link_alert(
        self, alert_id: str, plan_id: str, repair_row: Dict[str, Any]
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        result = self._request(
            "POST",
            f"/alerts/{alert_id}/link",
            {"planId": plan_id, "repairOperation": repair_row},
        )
        self._changed(PLANS)
        self._changed(ALERTS)
        return result["plan"], result["alert"]

    def unlink_alert(self, alert_id: str) -> Dict[str, Any]:
        result = self._request("DELETE", f"/alerts/{alert_id}/link")
        self._changed(PLANS)
        self._changed(ALERTS)
        return result["alert"]

    def start_maintenance(
        self, plan: Dict[str, Any], entry: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Store the plan, then the entry.

        The server has no transaction spanning both, so a failed entry
        request puts the previous plan back before the error propagates.
        """
        previous = self.get(PLANS, plan["id"])
        self.upsert(PLANS, plan)
        try:
            return self.insert(MAINTENANCE, entry)
        except FleetError:
            logger.warning("Rolling back plan %s after a failed maintenance entry", plan["id"])
            try:
                if previous is None:
                    self.delete(PLANS, plan["id"])
                else:
                    self.upsert(PLANS, previous)
            except FleetError as e:
                logger.error("Could not roll back plan %s: %s", plan["id"], e)
            raise
