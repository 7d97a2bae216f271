#!/usr/bin/env python3
"""Tests for PlanBuilder and PlanEditor."""

import pytest

from fleet import CarStatus, NotFoundError, StorageWriteError, ValidationError
from fleet.car_status import get_car_status_info
from fleet.due import calculate_car_due
from fleet.plan import MaintenancePlan, PeriodicOperation, RepairOperation
from fleet.planner import PlanEditor, total_cost

OIL = "Engine oil and filter replacement"


def make_plan(car_id, **overrides):
    fields = dict(
        id="plan_1",
        car_id=car_id,
        planned_date="2024-09-01",
        planned_completion_date="2024-09-02",
        planned_mileage=86000,
        periodic_operations=[PeriodicOperation(OIL, "medium", 80, "5W-30")],
        service_provider="Garage 21",
        notes="Before winter",
    )
    fields.update(overrides)
    return MaintenancePlan(**fields)


def report(fleet, car, priority="critical"):
    return fleet.alerts.create_alert({
        "carId": car.id, "type": "problem", "priority": priority,
        "description": "Squeaking brakes", "location": "Front axle", "mileage": 85000,
    })


class TestTotalCost:
    def test_sums_both_kinds(self):
        """Test the total covers periodic and repair rows."""
        plan = make_plan("c1", repair_operations=[
            RepairOperation("a1", "Brakes", "critical", 200),
            RepairOperation("a2", "Lamp", "can-wait", 0),
        ])
        assert total_cost(plan) == 280


class TestSaving:
    """Tests for saving and loading plans."""

    def test_save_draft_round_trip(self, fleet, car):
        """Test a saved draft loads back unchanged with its total."""
        saved = fleet.planner.save_draft(make_plan(car.id))
        loaded = fleet.planner.load_plan(saved.id)

        assert loaded == saved
        assert loaded.total_estimated_cost == 80
        assert loaded.created_at is not None

    def test_resave_keeps_created_at(self, fleet, car):
        """Test saving again keeps createdAt and the single record."""
        first = fleet.planner.save_draft(make_plan(car.id))
        created = first.created_at

        second = fleet.planner.save_draft(make_plan(car.id, notes="changed"))

        assert second.created_at == created
        assert fleet.planner.load_plan("plan_1").notes == "changed"
        assert len(fleet.data.list_plans()) == 1

    def test_negative_cost_rejected(self, fleet, car):
        """Test a negative cost stops the save."""
        plan = make_plan(car.id, periodic_operations=[PeriodicOperation(OIL, "low", -1)])
        with pytest.raises(ValidationError):
            fleet.planner.save_draft(plan)
        assert fleet.data.list_plans() == []

    @pytest.mark.parametrize("overrides,field", [
        ({"car_id": ""}, "carId"),
        ({"planned_date": None}, "plannedDate"),
        ({"planned_completion_date": None}, "plannedCompletionDate"),
        ({"periodic_operations": []}, "operations"),
    ])
    def test_save_plan_requires_fields(self, fleet, car, overrides, field):
        """Test each required field is named when missing."""
        fields = {"car_id": car.id, **overrides}
        with pytest.raises(ValidationError) as excinfo:
            fleet.planner.save_plan(make_plan(**fields))
        assert excinfo.value.field == field

    def test_save_plan_fills_car_name(self, fleet, car):
        """Test a manual save names the car."""
        plan = fleet.planner.save_plan(make_plan(car.id))
        assert plan.car_name == "2008 Honda Accord"

    def test_draft_rows_set_in_plan_flags(self, fleet, car):
        """Test repair rows in a draft drive the alerts' inPlan flags."""
        alert = report(fleet, car)
        row = fleet.alerts.repair_row(alert)
        fleet.planner.save_draft(make_plan(car.id, repair_operations=[row]))
        assert fleet.data.get_alert(alert.id).in_plan is True

        fleet.planner.save_draft(make_plan(car.id, repair_operations=[]))
        assert fleet.data.get_alert(alert.id).in_plan is False

    def test_delete_plan_clears_flags(self, fleet, car):
        """Test deleting a plan frees its alerts."""
        alert = report(fleet, car)
        plan = fleet.planner.save_draft(
            make_plan(car.id, repair_operations=[fleet.alerts.repair_row(alert)])
        )
        fleet.planner.delete_plan(plan.id)
        assert fleet.data.list_plans() == []
        assert fleet.data.get_alert(alert.id).in_plan is False

    def test_list_plans_newest_first(self, fleet, car):
        """Test plans are listed most recently updated first."""
        fleet.planner.save_draft(make_plan(car.id, id="old"))
        fleet.planner.save_draft(make_plan(car.id, id="new"))
        assert [p.id for p in fleet.planner.list_plans()] == ["new", "old"]


class TestSendToMaintenance:
    """Tests for moving a car into maintenance."""

    def test_no_operations_rejected(self, fleet, car):
        """Test a plan without operations writes nothing."""
        with pytest.raises(ValidationError):
            fleet.planner.send_to_maintenance(make_plan(car.id, periodic_operations=[]))
        assert fleet.data.list_maintenance_entries() == []
        assert fleet.data.list_plans() == []

    def test_no_start_date_rejected(self, fleet, car):
        """Test a plan without a start date writes nothing."""
        with pytest.raises(ValidationError):
            fleet.planner.send_to_maintenance(make_plan(car.id, planned_date=None))
        assert fleet.data.list_maintenance_entries() == []

    def test_unknown_car(self, fleet):
        """Test sending a plan for a missing car raises NotFoundError."""
        with pytest.raises(NotFoundError):
            fleet.planner.send_to_maintenance(make_plan("nope"))

    def test_creates_entry(self, fleet, car):
        """Test the entry is stored and the plan becomes scheduled."""
        entry = fleet.planner.send_to_maintenance(make_plan(car.id))

        assert entry.car_id == car.id
        assert entry.plan_id == "plan_1"
        assert entry.plan.periodic_operations[0].operation == OIL
        assert fleet.planner.load_plan("plan_1").status == "scheduled"
        assert get_car_status_info(fleet.data, car.id).status == CarStatus.MAINTENANCE

    def test_already_in_maintenance(self, fleet, car):
        """Test a car can hold one maintenance entry at most."""
        fleet.planner.send_to_maintenance(make_plan(car.id))
        with pytest.raises(ValidationError):
            fleet.planner.send_to_maintenance(make_plan(car.id, id="plan_2"))
        assert len(fleet.data.list_maintenance_entries()) == 1

    def test_plan_in_maintenance_cannot_be_deleted(self, fleet, car):
        """Test the plan of a car in service cannot be deleted."""
        fleet.planner.send_to_maintenance(make_plan(car.id))
        with pytest.raises(ValidationError):
            fleet.planner.delete_plan("plan_1")

    def test_failed_write_leaves_plan_and_car_untouched(self, fleet, car, storage):
        """Test a storage failure stores neither the scheduled plan nor the entry."""
        fleet.planner.save_draft(make_plan(car.id))
        storage.quota_bytes = storage._size(storage._items) + 50

        with pytest.raises(StorageWriteError):
            fleet.planner.send_to_maintenance(make_plan(car.id))

        assert fleet.planner.load_plan("plan_1").status == "draft"
        assert fleet.data.list_maintenance_entries() == []
        assert get_car_status_info(fleet.data, car.id).status == CarStatus.ACTIVE


class TestReturnToService:
    """Tests for taking a car out of maintenance."""

    def send_with_alert(self, fleet, car):
        alert = report(fleet, car)
        fleet.alerts.add_to_plan(alert.id)
        plan = fleet.planner.list_plans(car.id)[0]
        plan.planned_date = "2024-09-01"
        plan.periodic_operations = [PeriodicOperation(OIL, "medium", 80)]
        plan.repair_operations[0].estimated_cost = 150
        fleet.planner.send_to_maintenance(plan)
        return alert, plan

    def test_completes_visit(self, fleet, car):
        """Test returning completes the plan, records the visit and archives alerts."""
        alert, plan = self.send_with_alert(fleet, car)

        record = fleet.planner.return_to_service(
            car.id, mileage=86000, service_date="2024-09-02"
        )

        assert [op.type for op in record.operations] == ["maintenance", "repair"]
        assert record.operations[1].alert_id == alert.id
        assert record.total_cost == 230
        assert record.mileage == 86000

        stored_car = fleet.data.get_car(car.id)
        assert stored_car.mileage == 86000
        assert stored_car.last_service == "2024-09-02"
        assert stored_car.next_service == "2025-03-02"

        assert fleet.data.find_maintenance_entry(car.id) is None
        completed = fleet.planner.load_plan(plan.id)
        assert completed.status == "completed"
        assert completed.repair_operations[0].alert_id == alert.id

        stored_alert = fleet.data.get_alert(alert.id)
        assert stored_alert.status == "archived"
        assert stored_alert.in_plan is False
        assert get_car_status_info(fleet.data, car.id).status == CarStatus.ACTIVE

    def test_visit_resets_due_mileage(self, fleet, car):
        """Test a recorded visit restarts the mileage interval."""
        self.send_with_alert(fleet, car)
        fleet.planner.return_to_service(car.id, mileage=86000, service_date="2024-09-02")

        items = calculate_car_due(fleet.data, car.id, as_of="2024-09-10")
        oil = next(i for i in items if i.operation == OIL)
        assert oil.mileage_until_next == 10000

    def test_lower_mileage_rejected(self, fleet, car):
        """Test the odometer cannot go backwards on return."""
        self.send_with_alert(fleet, car)
        with pytest.raises(ValidationError):
            fleet.planner.return_to_service(car.id, mileage=1000)
        assert fleet.data.find_maintenance_entry(car.id) is not None

    def test_mileage_added_to_history(self, fleet, car):
        """Test the returned mileage is recorded as a service reading on the visit date."""
        self.send_with_alert(fleet, car)
        fleet.planner.return_to_service(car.id, mileage=86000, service_date="2024-09-02")

        last = fleet.data.list_mileage_history(car.id)[-1]
        assert last.type == "service"
        assert last.mileage == 86000
        assert last.date == "2024-09-02"

    def test_invalid_date_rejected(self, fleet, car):
        """Test an unreadable service date is refused before anything changes."""
        self.send_with_alert(fleet, car)
        with pytest.raises(ValidationError) as excinfo:
            fleet.planner.return_to_service(car.id, service_date="someday")
        assert excinfo.value.field == "date"
        assert fleet.data.find_maintenance_entry(car.id) is not None

    def test_not_in_maintenance(self, fleet, car):
        """Test returning a car that is not in service raises NotFoundError."""
        with pytest.raises(NotFoundError):
            fleet.planner.return_to_service(car.id)


class FakeTimer:
    """Stands in for threading.Timer; fired by calling fire()."""

    created = []

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.started = False
        self.cancelled = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function()


@pytest.fixture
def timers():
    FakeTimer.created = []
    return FakeTimer.created


def live(timers):
    return [t for t in timers if t.started and not t.cancelled]


class TestPlanEditorTimer:
    """Tests for the autosave timer."""

    def test_starts_on_open(self, fleet, timers):
        """Test opening an editor starts one 30 second timer."""
        editor = PlanEditor(fleet.planner, timer_factory=FakeTimer)
        assert editor.timer_active
        assert len(live(timers)) == 1
        assert timers[0].interval == 30.0

    def test_change_restarts_single_timer(self, fleet, timers):
        """Test each change replaces the running timer."""
        editor = PlanEditor(fleet.planner, timer_factory=FakeTimer)
        editor.update(notes="a")
        editor.update(planned_date="2024-09-01")
        assert len(timers) == 3
        assert len(live(timers)) == 1

    def test_close_cancels(self, fleet, timers):
        """Test closing cancels the timer for good."""
        editor = PlanEditor(fleet.planner, timer_factory=FakeTimer)
        editor.close()
        editor.update(notes="after close")
        assert not editor.timer_active
        assert live(timers) == []

    def test_fire_reschedules(self, fleet, timers):
        """Test a fired timer schedules the next one."""
        PlanEditor(fleet.planner, timer_factory=FakeTimer)
        timers[0].fire()
        assert len(live(timers)) == 1
        assert live(timers)[0] is timers[1]

    def test_untracked_field(self, fleet, timers):
        """Test updating an untracked field raises AttributeError."""
        editor = PlanEditor(fleet.planner, timer_factory=FakeTimer)
        with pytest.raises(AttributeError):
            editor.update(status="completed")


class TestPlanEditor:
    """Tests for editing and autosaving drafts."""

    def make_editor(self, fleet):
        return PlanEditor(fleet.planner, timer_factory=FakeTimer)

    def test_load_car_preselects_urgent(self, fleet, car, timers):
        """Test loading a car selects urgent operations and active alerts."""
        alert = report(fleet, car)
        editor = self.make_editor(fleet)
        editor.load_car(car.id, as_of="2024-12-20")

        selected = [i.operation for i in editor.periodic_items if i.selected]
        assert OIL in selected
        assert [r.alert_id for r in editor.repair_items] == [alert.id]
        assert editor.repair_items[0].selected

    def test_autosave_needs_date(self, fleet, car, timers):
        """Test autosave skips a draft without a start date."""
        editor = self.make_editor(fleet)
        editor.load_car(car.id, as_of="2024-12-20")
        assert editor.autosave() is None
        assert fleet.data.list_plans() == []

    def test_autosave_needs_selection(self, fleet, car, timers):
        """Test autosave skips a draft with nothing selected."""
        editor = self.make_editor(fleet)
        editor.load_car(car.id, as_of="2024-08-01")
        editor.update(planned_date="2024-08-05")
        assert editor.autosave() is None

    def test_timer_autosaves_draft(self, fleet, car, events, timers):
        """Test the timer saves the draft and sends draft_saved."""
        saved = []
        events.draft_saved.connect(lambda sender, **kw: saved.append(kw["plan"]), weak=False)
        editor = self.make_editor(fleet)
        editor.load_car(car.id, as_of="2024-12-20")
        editor.update(planned_date="2024-12-22")
        editor.set_periodic(OIL, estimated_cost=90, plan_notes="Synthetic")

        live(timers)[0].fire()

        assert len(saved) == 1
        plan = fleet.planner.load_plan(editor.plan_id)
        assert plan.status == "draft"
        assert plan.car_name == "2008 Honda Accord"
        oil = next(op for op in plan.periodic_operations if op.operation == OIL)
        assert oil.estimated_cost == 90
        assert oil.notes == "Synthetic"

    def test_second_autosave_updates_same_draft(self, fleet, car, timers):
        """Test repeated autosaves update one draft."""
        editor = self.make_editor(fleet)
        editor.load_car(car.id, as_of="2024-12-20")
        editor.update(planned_date="2024-12-22")
        first = editor.autosave()
        editor.update(notes="Call first")
        second = editor.autosave()
        assert first.id == second.id
        assert len(fleet.data.list_plans()) == 1

    def test_negative_cost_rejected(self, fleet, car, timers):
        """Test the editor refuses a negative cost."""
        editor = self.make_editor(fleet)
        editor.load_car(car.id, as_of="2024-12-20")
        with pytest.raises(ValidationError):
            editor.set_periodic(OIL, estimated_cost=-5)

    def test_open_plan_restores_rows(self, fleet, car, timers):
        """Test opening a saved plan restores its rows and dates."""
        fleet.planner.save_draft(make_plan(car.id))
        editor = self.make_editor(fleet)
        editor.open_plan("plan_1", as_of="2024-08-01")

        oil = next(i for i in editor.periodic_items if i.operation == OIL)
        assert oil.selected
        assert oil.estimated_cost == 80
        assert editor.planned_date == "2024-09-01"
        assert editor.total_cost == 80

    def test_send_closes_editor(self, fleet, car, timers):
        """Test sending from the editor stores the entry and stops the timer."""
        editor = self.make_editor(fleet)
        editor.load_car(car.id, as_of="2024-12-20")
        editor.update(planned_date="2024-12-22")

        entry = editor.send_to_maintenance()

        assert not editor.timer_active
        assert fleet.data.find_maintenance_entry(car.id).id == entry.id
