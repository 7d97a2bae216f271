"""Maintenance plan building, sending cars to service and the draft editor."""

import logging
import threading
from datetime import date
from typing import Callable, List, Optional, Tuple

from .alerts import AlertManager, sort_alerts
from .calculations import calc_next_service_date, now_iso, parse_timestamp
from .data_service import DataService, new_id
from .due import calculate_car_due, get_car_regulations
from .due_item import DueItem, RepairCandidate
from .errors import FleetError, NotFoundError, ValidationError
from .mileage import SERVICE
from .plan import MaintenanceEntry, MaintenancePlan, PeriodicOperation, RepairOperation
from .service_record import ServiceOperation, ServiceRecord
from .status import DuePriority, PlanStatus

logger = logging.getLogger(__name__)

AUTOSAVE_INTERVAL = 30.0


def total_cost(plan: MaintenancePlan) -> float:
    """Sum of estimated costs over periodic and repair rows."""
    return sum(op.estimated_cost or 0 for op in plan.periodic_operations) + sum(
        op.estimated_cost or 0 for op in plan.repair_operations
    )


def _check_costs(plan: MaintenancePlan) -> None:
    for op in plan.periodic_operations + plan.repair_operations:
        if (op.estimated_cost or 0) < 0:
            raise ValidationError("Estimated cost cannot be negative", field="estimatedCost")


class PlanBuilder:
    """Creates, saves and schedules maintenance plans."""

    def __init__(self, data: DataService, alerts: Optional[AlertManager] = None):
        self.data = data
        self.events = data.events
        self.alerts = alerts or AlertManager(data)

    def build_due_items(
        self, car_id: str, as_of=None
    ) -> Tuple[List[DueItem], List[RepairCandidate]]:
        """Due periodic items plus the car's active alerts as repair candidates."""
        due_items = calculate_car_due(self.data, car_id, as_of=as_of)
        candidates = [
            RepairCandidate(
                alert_id=alert.id,
                description=f"{alert.location}: {alert.description}",
                priority=alert.priority,
            )
            for alert in sort_alerts(
                [a for a in self.data.list_alerts() if a.car_id == car_id and a.is_active]
            )
        ]
        return due_items, candidates

    # -------------------------------------------------------------------------
    # Saving
    # -------------------------------------------------------------------------

    def _stamp(self, plan: MaintenancePlan) -> Optional[MaintenancePlan]:
        """Refresh timestamps and total before a write. Returns the stored version."""
        _check_costs(plan)
        previous = self.data.find_plan(plan.id)
        now = now_iso()
        plan.created_at = plan.created_at or (previous.created_at if previous else now)
        plan.updated_at = now
        plan.total_estimated_cost = total_cost(plan)
        return previous

    def _reconcile_if_rows_changed(
        self, previous: Optional[MaintenancePlan], plan: MaintenancePlan
    ) -> None:
        before = {r.alert_id for r in previous.repair_operations} if previous else set()
        after = {r.alert_id for r in plan.repair_operations}
        if before != after:
            self.alerts.reconcile_in_plan()

    def save_draft(self, plan: MaintenancePlan) -> MaintenancePlan:
        """Upsert a plan by id, refreshing its total and updatedAt."""
        previous = self._stamp(plan)
        self.data.save_plan(plan)
        logger.debug("Saved plan %s (%s)", plan.id, plan.status)
        self._reconcile_if_rows_changed(previous, plan)
        return plan

    def load_plan(self, plan_id: str) -> MaintenancePlan:
        return self.data.get_plan(plan_id)

    def validate_plan(self, plan: MaintenancePlan) -> None:
        """Fields a manually saved plan needs."""
        if not plan.car_id:
            raise ValidationError("Select a car", field="carId")
        if not plan.planned_date:
            raise ValidationError("Set the maintenance start date", field="plannedDate")
        if not plan.planned_completion_date:
            raise ValidationError(
                "Set the maintenance completion date", field="plannedCompletionDate"
            )
        if plan.operation_count == 0:
            raise ValidationError("Select at least one operation", field="operations")

    def save_plan(self, plan: MaintenancePlan) -> MaintenancePlan:
        self.validate_plan(plan)
        if not plan.car_name:
            plan.car_name = self.data.get_car(plan.car_id).name
        return self.save_draft(plan)

    def list_plans(self, car_id: Optional[str] = None) -> List[MaintenancePlan]:
        """Plans, most recently updated first."""
        plans = self.data.list_plans(car_id)
        return sorted(plans, key=lambda p: p.updated_at or p.created_at or "", reverse=True)

    def delete_plan(self, plan_id: str) -> None:
        for entry in self.data.list_maintenance_entries():
            if entry.plan_id == plan_id:
                raise ValidationError(
                    f"Plan {plan_id} belongs to a car that is in maintenance",
                    field="planId",
                )
        plan = self.data.get_plan(plan_id)
        self.data.delete_plan(plan_id)
        if plan.repair_operations:
            self.alerts.reconcile_in_plan()
        logger.info("Deleted plan %s", plan_id)

    # -------------------------------------------------------------------------
    # Maintenance transitions
    # -------------------------------------------------------------------------

    def send_to_maintenance(self, plan: MaintenancePlan) -> MaintenanceEntry:
        """
        Put the car into service with this plan.

        Needs a car, a start date and at least one selected operation. All
        checks run before anything is written, and the scheduled plan and
        the entry are stored together or not at all.
        """
        if not plan.car_id:
            raise ValidationError("Select a car", field="carId")
        if not plan.planned_date:
            raise ValidationError("Set the maintenance start date", field="plannedDate")
        if plan.operation_count == 0:
            raise ValidationError("Select at least one operation", field="operations")
        _check_costs(plan)
        car = self.data.get_car(plan.car_id)
        if self.data.find_maintenance_entry(car.id) is not None:
            raise ValidationError(f"{car.name} is already in maintenance", field="carId")

        plan.car_name = plan.car_name or car.name
        plan.status = PlanStatus.SCHEDULED.value
        previous = self._stamp(plan)

        entry = MaintenanceEntry(
            id=new_id("maint"),
            car_id=car.id,
            car_name=car.name,
            plan_id=plan.id,
            planned_date=plan.planned_date,
            planned_completion_date=plan.planned_completion_date,
            planned_mileage=plan.planned_mileage,
            service_provider=plan.service_provider,
            plan=plan,
            entered_at=now_iso(),
        )
        self.data.start_maintenance(plan, entry)
        self._reconcile_if_rows_changed(previous, plan)
        logger.info("Car %s sent to maintenance with plan %s", car.id, plan.id)
        return entry

    def return_to_service(
        self, car_id: str, mileage: Optional[int] = None, service_date: Optional[str] = None
    ) -> ServiceRecord:
        """
        Take a car out of maintenance.

        Completes its plan, records the visit, moves lastService and archives
        the repaired alerts. A mileage reading moves the odometer and is added
        to the car's mileage history.
        """
        car = self.data.get_car(car_id)
        entry = self.data.find_maintenance_entry(car_id)
        if entry is None:
            raise NotFoundError(f"{car.name} is not in maintenance")
        if mileage is not None and (mileage < 0 or mileage < car.mileage):
            raise ValidationError(
                f"Mileage {mileage} is lower than the recorded {car.mileage}",
                field="mileage",
            )
        try:
            parse_timestamp(service_date)
        except (ValueError, OverflowError):
            raise ValidationError(f"Invalid date '{service_date}'", field="date") from None

        plan = (self.data.find_plan(entry.plan_id) if entry.plan_id else None) or entry.plan
        service_date = service_date or date.today().isoformat()

        self.data.remove_maintenance_entry(car_id)
        if plan is not None:
            plan.status = PlanStatus.COMPLETED.value
            plan.updated_at = now_iso()
            self.data.save_plan(plan)

        operations = []
        if plan is not None:
            operations = [
                ServiceOperation("maintenance", op.operation, op.estimated_cost)
                for op in plan.periodic_operations
            ] + [
                ServiceOperation("repair", op.description, op.estimated_cost, op.alert_id)
                for op in plan.repair_operations
            ]
        record = ServiceRecord(
            id=new_id("service"),
            car_id=car.id,
            date=service_date,
            mileage=mileage if mileage is not None else car.mileage,
            car_name=car.name,
            service_provider=entry.service_provider or None,
            total_cost=total_cost(plan) if plan is not None else 0,
            operations=operations,
            notes=(plan.notes or None) if plan is not None else None,
            created_at=now_iso(),
        )
        self.data.save_service_record(record)

        done = {op.description for op in operations if op.type == "maintenance"}
        periods = [
            r.period_months
            for r in get_car_regulations(self.data, car_id)
            if r.operation in done
        ]
        car.last_service = service_date
        if mileage is not None:
            car.mileage = mileage
        next_service = calc_next_service_date(parse_timestamp(service_date), periods)
        if next_service is not None:
            car.next_service = next_service.isoformat()
        self.data.update_car(car)
        if mileage is not None:
            self.data.record_mileage(car_id, mileage, SERVICE, day=service_date)

        for op in operations:
            if op.alert_id and self.data.find_alert(op.alert_id) is not None:
                self.alerts.archive_alert(op.alert_id)

        logger.info("Car %s returned to service", car_id)
        return record


class PlanEditor:
    """
    In-memory state of one open plan editor.

    While open, a timer autosaves the draft every AUTOSAVE_INTERVAL
    seconds. Any change to a tracked field restarts it, so at most one
    timer is live. close() cancels it.
    """

    TRACKED_FIELDS = (
        "car_id",
        "planned_date",
        "planned_completion_date",
        "planned_mileage",
        "service_provider",
        "notes",
    )

    def __init__(
        self,
        builder: PlanBuilder,
        interval: float = AUTOSAVE_INTERVAL,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        self.builder = builder
        self.interval = interval
        self.timer_factory = timer_factory
        self.plan_id: Optional[str] = None
        self.created_at: Optional[str] = None
        self.car_id: Optional[str] = None
        self.planned_date: Optional[str] = None
        self.planned_completion_date: Optional[str] = None
        self.planned_mileage: Optional[int] = None
        self.service_provider = ""
        self.notes = ""
        self.periodic_items: List[DueItem] = []
        self.repair_items: List[RepairCandidate] = []
        self.closed = False
        self._timer = None
        self._lock = threading.RLock()
        self._restart_timer()

    # -------------------------------------------------------------------------
    # Timer
    # -------------------------------------------------------------------------

    def _restart_timer(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if self.closed:
                return
            self._timer = self.timer_factory(self.interval, self._on_timer)
            self._timer.daemon = True
            self._timer.start()

    def _on_timer(self) -> None:
        try:
            self.autosave()
        except FleetError as e:
            logger.error("Error auto-saving draft: %s", e)
        self._restart_timer()

    @property
    def timer_active(self) -> bool:
        return self._timer is not None

    def close(self) -> None:
        with self._lock:
            self.closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    # -------------------------------------------------------------------------
    # Editing
    # -------------------------------------------------------------------------

    def load_car(self, car_id: str, as_of=None) -> None:
        """Start a plan for a car, pre-filled with due items and open alerts."""
        periodic_items, repair_items = self.builder.build_due_items(car_id, as_of=as_of)
        with self._lock:
            self.periodic_items, self.repair_items = periodic_items, repair_items
            self.update(car_id=car_id)

    def open_plan(self, plan_id: str, as_of=None) -> None:
        """Edit a stored plan. Its rows come back selected with their costs and notes."""
        plan = self.builder.load_plan(plan_id)
        periodic_items, repair_items = self.builder.build_due_items(
            plan.car_id, as_of=as_of
        )
        periodic = {op.operation: op for op in plan.periodic_operations}
        for item in periodic_items:
            op = periodic.pop(item.operation, None)
            item.selected = op is not None
            if op is not None:
                item.estimated_cost = op.estimated_cost
                item.plan_notes = op.notes
        for op in periodic.values():
            periodic_items.append(
                DueItem(op.operation, 0, 0, 0, 0, _due_priority(op.priority), selected=True,
                        estimated_cost=op.estimated_cost, plan_notes=op.notes)
            )

        repairs = {op.alert_id: op for op in plan.repair_operations}
        for item in repair_items:
            op = repairs.pop(item.alert_id, None)
            item.selected = op is not None
            if op is not None:
                item.estimated_cost = op.estimated_cost
                item.plan_notes = op.notes
        for op in repairs.values():
            repair_items.append(
                RepairCandidate(op.alert_id, op.description, op.priority,
                                estimated_cost=op.estimated_cost, plan_notes=op.notes)
            )

        with self._lock:
            self.periodic_items, self.repair_items = periodic_items, repair_items
            self.plan_id = plan.id
            self.created_at = plan.created_at
            self.update(
                car_id=plan.car_id,
                planned_date=plan.planned_date,
                planned_completion_date=plan.planned_completion_date,
                planned_mileage=plan.planned_mileage,
                service_provider=plan.service_provider,
                notes=plan.notes,
            )

    def update(self, **changes) -> None:
        """Change tracked fields and restart the autosave timer."""
        with self._lock:
            for name, value in changes.items():
                if name not in self.TRACKED_FIELDS:
                    raise AttributeError(f"'{name}' is not an editable plan field")
                setattr(self, name, value)
            self._restart_timer()

    def set_periodic(self, operation: str, selected=None, estimated_cost=None, plan_notes=None):
        item = next((i for i in self.periodic_items if i.operation == operation), None)
        if item is None:
            raise NotFoundError(f"No periodic operation '{operation}' in this plan")
        self._apply(item, selected, estimated_cost, plan_notes)

    def set_repair(self, alert_id: str, selected=None, estimated_cost=None, plan_notes=None):
        item = next((i for i in self.repair_items if i.alert_id == alert_id), None)
        if item is None:
            raise NotFoundError(f"No repair for alert '{alert_id}' in this plan")
        self._apply(item, selected, estimated_cost, plan_notes)

    def _apply(self, item, selected, estimated_cost, plan_notes) -> None:
        if estimated_cost is not None and estimated_cost < 0:
            raise ValidationError("Estimated cost cannot be negative", field="estimatedCost")
        with self._lock:
            if selected is not None:
                item.selected = selected
            if estimated_cost is not None:
                item.estimated_cost = estimated_cost
            if plan_notes is not None:
                item.plan_notes = plan_notes
            self._restart_timer()

    # -------------------------------------------------------------------------
    # Plan assembly and actions
    # -------------------------------------------------------------------------

    def to_plan(self) -> MaintenancePlan:
        """The plan as currently edited, with selected rows only."""
        with self._lock:
            return MaintenancePlan(
                id=self.plan_id or new_id("draft"),
                car_id=self.car_id,
                planned_date=self.planned_date,
                planned_completion_date=self.planned_completion_date,
                planned_mileage=self.planned_mileage,
                periodic_operations=[
                    PeriodicOperation(
                        item.operation,
                        item.priority.value if item.priority else "low",
                        item.estimated_cost or 0,
                        item.plan_notes or item.notes or "",
                    )
                    for item in self.periodic_items
                    if item.selected
                ],
                repair_operations=[
                    RepairOperation(
                        item.alert_id,
                        item.description,
                        item.priority,
                        item.estimated_cost or 0,
                        item.plan_notes or item.notes or "",
                    )
                    for item in self.repair_items
                    if item.selected
                ],
                service_provider=self.service_provider or "",
                notes=self.notes or "",
                created_at=self.created_at,
            )

    @property
    def total_cost(self) -> float:
        return total_cost(self.to_plan())

    def autosave(self) -> Optional[MaintenancePlan]:
        """
        Persist the draft when there is a car, a start date and a selection.

        Runs under the editor lock, so edits made meanwhile wait for the
        save to finish.
        """
        with self._lock:
            if not self.car_id or not self.planned_date:
                return None
            plan = self.to_plan()
            if plan.operation_count == 0:
                return None
            car = self.builder.data.find_car(self.car_id)
            plan.car_name = car.name if car else ""
            plan = self.builder.save_draft(plan)
            self.plan_id = plan.id
            self.created_at = plan.created_at
        self.builder.events.draft_saved.send(self, plan=plan)
        logger.info("Draft %s auto-saved", plan.id)
        return plan

    def save(self) -> MaintenancePlan:
        plan = self.builder.save_plan(self.to_plan())
        self.plan_id = plan.id
        self.close()
        return plan

    def send_to_maintenance(self) -> MaintenanceEntry:
        entry = self.builder.send_to_maintenance(self.to_plan())
        self.plan_id = entry.plan_id
        self.close()
        return entry


def _due_priority(value: str) -> DuePriority:
    try:
        return DuePriority(value)
    except ValueError:
        return DuePriority.LOW
