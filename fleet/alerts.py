"""Alert lifecycle: reporting, archiving and linking alerts to plans."""

import logging
from typing import Any, Dict, List, Optional

from .alert import Alert
from .calculations import EPOCH, now_iso, parse_timestamp
from .data_service import DataService, new_id
from .errors import NotFoundError, ValidationError
from .plan import MaintenancePlan, RepairOperation
from .status import AlertPriority, AlertStatus, AlertType, PlanStatus

logger = logging.getLogger(__name__)

RECOMMENDATION_LOCATION = "Recommendation system"

# Fields whose change requires the alert to be validated again
_CORE_FIELDS = ("carId", "description", "location", "mileage", "type", "priority")


def _parse_mileage(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None


def validate_alert_data(data: Dict[str, Any]) -> None:
    """
    Check report form data, stopping at the first bad field.

    Order: car, description, location, mileage, type, priority.
    """
    if not data.get("carId"):
        raise ValidationError("Select a car", field="carId")
    if not (data.get("description") or "").strip():
        raise ValidationError("Describe the problem", field="description")
    if not (data.get("location") or "").strip():
        raise ValidationError("Specify where the problem was found", field="location")
    mileage = _parse_mileage(data.get("mileage"))
    if mileage is None or mileage <= 0:
        raise ValidationError("Enter a valid mileage", field="mileage")
    if data.get("type") not in [t.value for t in AlertType]:
        raise ValidationError("Invalid alert type", field="type")
    if data.get("priority") not in [p.value for p in AlertPriority]:
        raise ValidationError("Invalid priority", field="priority")


def _sort_key_date(alert: Alert):
    return parse_timestamp(alert.reported_at) or EPOCH


def sort_alerts(alerts: List[Alert]) -> List[Alert]:
    """Critical first, then unclear, then can-wait; newest report first within each."""
    by_date = sorted(alerts, key=_sort_key_date, reverse=True)
    return sorted(by_date, key=lambda a: _priority_rank(a.priority))


def _priority_rank(priority: str) -> int:
    try:
        return AlertPriority(priority).rank
    except ValueError:
        return len(AlertPriority)


def _priority_label(priority: str) -> str:
    try:
        return AlertPriority(priority).label
    except ValueError:
        return priority


class AlertManager:
    """Operations on alerts, including their membership in maintenance plans."""

    def __init__(self, data: DataService):
        self.data = data

    def create_alert(self, form: Dict[str, Any], alert_id: Optional[str] = None) -> Alert:
        """
        Validate a report and store it as an active alert outside any plan.

        An alert_id given by the caller is kept, as long as no alert has it yet.
        """
        validate_alert_data(form)
        car = self.data.find_car(form["carId"])
        if car is None:
            raise NotFoundError(f"Car '{form['carId']}' not found")
        if alert_id and self.data.find_alert(alert_id) is not None:
            raise ValidationError(f"Alert '{alert_id}' already exists", field="id")

        alert = Alert(
            alert_id or new_id("alert"),
            car.id,
            form["type"],
            form["priority"],
            form["description"].strip(),
            form["location"].strip(),
            _parse_mileage(form["mileage"]),
            car_name=form.get("carName") or car.name,
            status=AlertStatus.ACTIVE.value,
            in_plan=False,
            reported_at=now_iso(),
        )
        self.data.insert_alert(alert)
        logger.info("Created %s alert %s for car %s", alert.priority, alert.id, car.id)
        return alert

    def create_recommendation_alert(
        self, car_id: str, car_name: str, description: str, mileage: int
    ) -> Alert:
        return self.create_alert({
            "carId": car_id,
            "carName": car_name,
            "type": AlertType.RECOMMENDATION.value,
            "priority": AlertPriority.CAN_WAIT.value,
            "description": description,
            "location": RECOMMENDATION_LOCATION,
            "mileage": mileage,
        })

    def update_alert(self, alert_id: str, changes: Dict[str, Any]) -> Alert:
        """Apply form changes to an alert, validating again if core fields moved."""
        alert = self.data.get_alert(alert_id)
        form = {
            "carId": alert.car_id,
            "description": alert.description,
            "location": alert.location,
            "mileage": alert.mileage,
            "type": alert.type,
            "priority": alert.priority,
        }
        if any(key in changes for key in _CORE_FIELDS):
            form.update({k: v for k, v in changes.items() if k in _CORE_FIELDS})
            validate_alert_data(form)

        alert.car_id = form["carId"]
        alert.description = form["description"].strip()
        alert.location = form["location"].strip()
        alert.mileage = _parse_mileage(form["mileage"])
        alert.type = form["type"]
        alert.priority = form["priority"]
        if "carName" in changes:
            alert.car_name = changes["carName"]
        return self.data.save_alert(alert)

    def archive_alert(self, alert_id: str) -> Alert:
        """Archive an alert. One that sits in a plan is taken out of it first."""
        alert = self.data.get_alert(alert_id)
        if alert.in_plan:
            alert = self.data.unlink_alert(alert_id)
        alert.status = AlertStatus.ARCHIVED.value
        logger.info("Archived alert %s", alert_id)
        return self.data.save_alert(alert)

    def restore_alert(self, alert_id: str) -> Alert:
        """Make an archived alert active again. A restored alert is never in a plan."""
        alert = self.data.get_alert(alert_id)
        if alert.in_plan:
            alert = self.data.unlink_alert(alert_id)
        alert.status = AlertStatus.ACTIVE.value
        logger.info("Restored alert %s", alert_id)
        return self.data.save_alert(alert)

    # -------------------------------------------------------------------------
    # Plan membership
    # -------------------------------------------------------------------------

    def _owning_plan(self, alert: Alert) -> MaintenancePlan:
        """
        The open plan already holding the alert's row, else the car's newest
        draft, created when the car has none.
        """
        plans = self.data.list_plans(alert.car_id)
        for plan in plans:
            if plan.status != PlanStatus.COMPLETED.value and plan.has_alert(alert.id):
                return plan
        drafts = [p for p in plans if p.is_draft]
        if drafts:
            return max(drafts, key=lambda p: p.updated_at or p.created_at or "")
        now = now_iso()
        plan = MaintenancePlan(
            id=new_id("plan"),
            car_id=alert.car_id,
            car_name=alert.car_name or "",
            created_at=now,
            updated_at=now,
        )
        logger.debug("Created draft plan %s for car %s", plan.id, alert.car_id)
        return self.data.save_plan(plan)

    def repair_row(self, alert: Alert) -> RepairOperation:
        """The plan row that stands for an alert."""
        reported = parse_timestamp(alert.reported_at)
        reported_on = reported.date().isoformat() if reported else "unknown date"
        return RepairOperation(
            alert_id=alert.id,
            description=f"{alert.location}: {alert.description}",
            priority=alert.priority,
            estimated_cost=0,
            notes=(
                f"Added from alert of {reported_on} "
                f"with priority {_priority_label(alert.priority)}"
            ),
        )

    def add_to_plan(
        self,
        alert_id: str,
        plan_id: Optional[str] = None,
        repair: Optional[RepairOperation] = None,
    ) -> Alert:
        """
        Put an active alert into a plan of its own car.

        Without a plan_id the owning plan is used. Completed plans are closed
        to new rows.
        """
        alert = self.data.get_alert(alert_id)
        if not alert.is_active:
            raise ValidationError("Archived alerts cannot be added to a plan", field="status")
        if plan_id is None:
            plan = self._owning_plan(alert)
        else:
            plan = self.data.get_plan(plan_id)
            if plan.car_id != alert.car_id:
                raise ValidationError(
                    f"Plan {plan.id} belongs to another car", field="planId"
                )
            if plan.status == PlanStatus.COMPLETED.value:
                raise ValidationError(f"Plan {plan.id} is already completed", field="planId")
        plan, alert = self.data.link_alert(alert.id, plan.id, repair or self.repair_row(alert))
        logger.info("Added alert %s to plan %s", alert_id, plan.id)
        return alert

    def remove_from_plan(self, alert_id: str) -> Alert:
        alert = self.data.unlink_alert(alert_id)
        logger.info("Removed alert %s from its plan", alert_id)
        return alert

    def toggle_plan(self, alert_id: str) -> Alert:
        alert = self.data.get_alert(alert_id)
        if alert.in_plan:
            return self.remove_from_plan(alert_id)
        return self.add_to_plan(alert_id)

    def reconcile_in_plan(self) -> int:
        """
        Recompute every alert's inPlan flag from open plans' repair rows.

        Plan rows are authoritative; the flag is a cached copy. Returns the
        number of alerts whose flag was corrected.
        """
        linked = {
            row.alert_id
            for plan in self.data.list_plans()
            if plan.status != PlanStatus.COMPLETED.value
            for row in plan.repair_operations
        }
        fixed = 0
        for alert in self.data.list_alerts():
            in_plan = alert.id in linked
            if alert.in_plan != in_plan:
                alert.in_plan = in_plan
                self.data.save_alert(alert)
                fixed += 1
        if fixed:
            logger.warning("Corrected inPlan flag on %d alerts", fixed)
        return fixed

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def list_alerts(
        self,
        car_id: Optional[str] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        type: Optional[str] = None,
    ) -> List[Alert]:
        alerts = self.data.list_alerts()
        if car_id:
            alerts = [a for a in alerts if a.car_id == car_id]
        if status:
            alerts = [a for a in alerts if a.status == status]
        if priority:
            alerts = [a for a in alerts if a.priority == priority]
        if type:
            alerts = [a for a in alerts if a.type == type]
        return sort_alerts(alerts)

    def get_alert_stats(self) -> Dict[str, int]:
        alerts = self.data.list_alerts()

        def count(predicate):
            return sum(1 for a in alerts if predicate(a))

        return {
            "total": len(alerts),
            "active": count(lambda a: a.is_active),
            "archived": count(lambda a: a.is_archived),
            "critical": count(lambda a: a.priority == AlertPriority.CRITICAL.value),
            "unclear": count(lambda a: a.priority == AlertPriority.UNCLEAR.value),
            "canWait": count(lambda a: a.priority == AlertPriority.CAN_WAIT.value),
            "problems": count(lambda a: a.type == AlertType.PROBLEM.value),
            "recommendations": count(
                lambda a: a.type == AlertType.RECOMMENDATION.value
            ),
        }
