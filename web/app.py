"""Flask JSON API for the fleet tracker, plus the main app auth hand-off."""

import logging
import os
from pathlib import Path

from flask import Flask, jsonify, redirect, request, session

# Add parent directory to path for fleet imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from fleet.auth import consume_auth_params
from fleet.car_status import get_car_status_info, get_fleet_stats
from fleet.config import load_config
from fleet.data_service import int_field, new_id
from fleet.due import calculate_car_due, get_car_regulations, reset_to_default, save_car_guide
from fleet.errors import FleetError, NotFoundError, StorageWriteError, ValidationError
from fleet.events import FleetEvents
from fleet.loader import (
    alert_to_dict,
    car_to_dict,
    entry_from_dict,
    entry_to_dict,
    mileage_reading_to_dict,
    plan_from_dict,
    plan_to_dict,
    regulation_from_dict,
    regulation_to_dict,
    repair_operation_from_dict,
    service_record_from_dict,
    service_record_to_dict,
    shop_to_dict,
)
from fleet.services import Fleet
from fleet.storage import LocalProvider, LocalStorage

app = Flask(__name__)
app.secret_key = os.environ.get("SECRET_KEY", "dev-secret-key-change-in-prod")

# Fields of an alert that go through validation when changed
ALERT_FORM_FIELDS = ("carId", "carName", "description", "location", "mileage", "type",
                     "priority")


def get_fleet() -> Fleet:
    """The fleet served by this app, opened from the configured store on first use."""
    fleet = app.config.get("FLEET")
    if fleet is None:
        config = load_config()
        events = FleetEvents()
        provider = LocalProvider(LocalStorage(config.store_path), events)
        provider.migrate_legacy_keys()
        fleet = Fleet(provider, events)
        app.config["FLEET"] = fleet
        app.logger.info("Serving fleet store %s", config.store_path)
    return fleet


def json_body() -> dict:
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ValidationError("Expected a JSON object")
    return body


def due_item_to_dict(item) -> dict:
    return {
        "operation": item.operation,
        "mileage": item.mileage_interval,
        "period": item.period_months,
        "notes": item.notes,
        "mileageUntilNext": item.mileage_until_next,
        "monthsUntilNext": item.months_until_next,
        "priority": item.priority.value,
        "isDue": item.is_due,
        "selected": item.selected,
        "estimatedCost": item.estimated_cost,
        "planNotes": item.plan_notes,
        "mileageSinceLastService": item.mileage_since_last_service,
        "monthsSinceService": item.months_since_service,
    }


# =============================================================================
# Error handling
# =============================================================================


@app.errorhandler(ValidationError)
def handle_validation_error(error):
    return jsonify({"error": str(error), "field": error.field}), 400


@app.errorhandler(NotFoundError)
def handle_not_found(error):
    return jsonify({"error": str(error)}), 404


@app.errorhandler(FleetError)
def handle_fleet_error(error):
    app.logger.error("Request %s %s failed: %s", request.method, request.path, error)
    return jsonify({"error": str(error)}), 500


@app.errorhandler(StorageWriteError)
def handle_storage_error(error):
    app.logger.error("Could not save data: %s", error)
    return jsonify({"error": f"Could not save data: {error}"}), 500


# =============================================================================
# Cars
# =============================================================================


@app.route("/api/cars", methods=["GET"])
def list_cars():
    return jsonify([car_to_dict(c) for c in get_fleet().data.list_cars()])


@app.route("/api/cars", methods=["POST"])
def create_car():
    """
    Add a car, validated like any other.

    A body carrying an id comes from a client data service, which keeps
    its own mileage history, so no reading is recorded here for it.
    """
    body = json_body()
    car = get_fleet().data.save_car(
        body.get("brand"),
        body.get("model"),
        int_field(body, "year", None),
        mileage=int_field(body, "mileage", 0),
        vin=body.get("vin"),
        plate_number=body.get("plateNumber"),
        nickname=body.get("nickname"),
        last_service=body.get("lastService"),
        car_id=body.get("id"),
        history=not body.get("id"),
    )
    return jsonify(car_to_dict(car)), 201


@app.route("/api/cars/<car_id>", methods=["GET"])
def get_car(car_id: str):
    return jsonify(car_to_dict(get_fleet().data.get_car(car_id)))


@app.route("/api/cars/<car_id>", methods=["PUT"])
def update_car(car_id: str):
    """Apply edits to a car. The odometer may not go backwards."""
    body = json_body()
    car = get_fleet().data.edit_car(car_id, body, history="id" not in body)
    return jsonify(car_to_dict(car))


@app.route("/api/cars/<car_id>/status", methods=["GET"])
def car_status(car_id: str):
    fleet = get_fleet()
    fleet.data.get_car(car_id)
    info = get_car_status_info(fleet.data, car_id)
    return jsonify({
        "status": info.status.value,
        "label": info.label,
        "alertCount": info.alert_count,
        "criticalAlertCount": info.critical_alert_count,
        "isInMaintenance": info.is_in_maintenance,
    })


@app.route("/api/cars/<car_id>/due", methods=["GET"])
def car_due(car_id: str):
    items = calculate_car_due(get_fleet().data, car_id, as_of=request.args.get("asOf"))
    return jsonify([due_item_to_dict(i) for i in items])


@app.route("/api/cars/<car_id>/regulations", methods=["GET"])
def car_regulations(car_id: str):
    regulations = get_car_regulations(get_fleet().data, car_id)
    return jsonify([regulation_to_dict(r) for r in regulations])


@app.route("/api/cars/<car_id>/regulations", methods=["PUT"])
def save_regulations(car_id: str):
    body = request.get_json(silent=True)
    if not isinstance(body, list):
        raise ValidationError("Expected a list of regulations")
    try:
        regulations = [regulation_from_dict(r) for r in body]
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Invalid regulation: {e}")
    save_car_guide(get_fleet().data, car_id, regulations)
    return jsonify([regulation_to_dict(r) for r in regulations])


@app.route("/api/cars/<car_id>/regulations", methods=["DELETE"])
def reset_regulations(car_id: str):
    regulations = reset_to_default(get_fleet().data, car_id)
    return jsonify([regulation_to_dict(r) for r in regulations])


# =============================================================================
# Alerts
# =============================================================================


@app.route("/api/alerts", methods=["GET"])
def list_alerts():
    alerts = get_fleet().alerts.list_alerts(
        car_id=request.args.get("carId"),
        status=request.args.get("status"),
        priority=request.args.get("priority"),
        type=request.args.get("type"),
    )
    return jsonify([alert_to_dict(a) for a in alerts])


@app.route("/api/alerts", methods=["POST"])
def create_alert():
    """Report an alert. It is always validated and starts active, outside any plan."""
    body = json_body()
    alert = get_fleet().alerts.create_alert(body, alert_id=body.get("id"))
    return jsonify(alert_to_dict(alert)), 201


@app.route("/api/alerts/<alert_id>", methods=["GET"])
def get_alert(alert_id: str):
    return jsonify(alert_to_dict(get_fleet().data.get_alert(alert_id)))


@app.route("/api/alerts/<alert_id>", methods=["PUT"])
def update_alert(alert_id: str):
    """
    Change an alert.

    A status change archives or restores it and form fields are validated
    again. inPlan adds the alert to its owning plan or takes it out.
    """
    body = json_body()
    fleet = get_fleet()
    alert = fleet.data.get_alert(alert_id)

    if body.get("status") and body["status"] != alert.status:
        if body["status"] == "archived":
            fleet.alerts.archive_alert(alert_id)
        elif body["status"] == "active":
            fleet.alerts.restore_alert(alert_id)
        else:
            raise ValidationError(f"Invalid status '{body['status']}'", field="status")

    form = {k: v for k, v in body.items() if k in ALERT_FORM_FIELDS}
    if form:
        fleet.alerts.update_alert(alert_id, form)

    if "inPlan" in body:
        alert = fleet.data.get_alert(alert_id)
        if body["inPlan"] and not alert.in_plan:
            fleet.alerts.add_to_plan(alert_id)
        elif not body["inPlan"] and alert.in_plan:
            fleet.alerts.remove_from_plan(alert_id)
    return jsonify(alert_to_dict(fleet.data.get_alert(alert_id)))


@app.route("/api/alerts/<alert_id>/link", methods=["POST"])
def link_alert(alert_id: str):
    """Put an alert into a plan of its car. Without a planId the owning plan is used."""
    body = json_body()
    fleet = get_fleet()
    repair = None
    if body.get("repairOperation"):
        try:
            repair = repair_operation_from_dict(body["repairOperation"])
        except (KeyError, TypeError, AttributeError) as e:
            raise ValidationError(f"Invalid repair operation: {e}", field="repairOperation")
    plan_id = body.get("planId") or None
    alert = fleet.alerts.add_to_plan(alert_id, plan_id, repair)
    if plan_id is not None:
        plan = fleet.data.get_plan(plan_id)
    else:
        plan = next(p for p in fleet.data.list_plans(alert.car_id) if p.has_alert(alert_id))
    return jsonify({"plan": plan_to_dict(plan), "alert": alert_to_dict(alert)})


@app.route("/api/alerts/<alert_id>/link", methods=["DELETE"])
def unlink_alert(alert_id: str):
    alert = get_fleet().alerts.remove_from_plan(alert_id)
    return jsonify({"alert": alert_to_dict(alert)})


# =============================================================================
# Service records
# =============================================================================


@app.route("/api/service-records", methods=["GET"])
def list_service_records():
    records = get_fleet().data.list_service_records(request.args.get("carId"))
    return jsonify([service_record_to_dict(r) for r in records])


@app.route("/api/service-records", methods=["POST"])
def create_service_record():
    body = json_body()
    if not body.get("carId") or not body.get("date"):
        raise ValidationError("Service records need a car and a date", field="carId")
    fleet = get_fleet()
    fleet.data.get_car(body["carId"])
    record = service_record_from_dict({**body, "id": body.get("id") or new_id("service")})
    fleet.data.save_service_record(record)
    return jsonify(service_record_to_dict(record)), 201


# =============================================================================
# Mileage history
# =============================================================================


@app.route("/api/mileage", methods=["GET"])
def list_mileage():
    readings = get_fleet().data.list_mileage_history(request.args.get("carId"))
    return jsonify([mileage_reading_to_dict(r) for r in readings])


@app.route("/api/mileage", methods=["POST"])
def create_mileage():
    """Add an odometer reading to a car's history."""
    body = json_body()
    fleet = get_fleet()
    if not body.get("carId"):
        raise ValidationError("Select a car", field="carId")
    fleet.data.get_car(body["carId"])
    reading = fleet.data.record_mileage(
        body["carId"],
        int_field(body, "mileage", None),
        body.get("type") or "manual",
        day=body.get("date"),
        reading_id=body.get("id"),
    )
    return jsonify(mileage_reading_to_dict(reading)), 201


# =============================================================================
# Maintenance entries
# =============================================================================


@app.route("/api/maintenance", methods=["GET"])
def list_maintenance():
    entries = get_fleet().data.list_maintenance_entries()
    return jsonify([entry_to_dict(e) for e in entries])


@app.route("/api/maintenance", methods=["POST"])
def create_maintenance():
    body = json_body()
    if not body.get("carId"):
        raise ValidationError("Select a car", field="carId")
    fleet = get_fleet()
    if fleet.data.find_maintenance_entry(body["carId"]) is not None:
        raise ValidationError("Car is already in maintenance", field="carId")
    entry = entry_from_dict({**body, "id": body.get("id") or new_id("maint")})
    fleet.data.save_maintenance_entry(entry)
    return jsonify(entry_to_dict(entry)), 201


@app.route("/api/maintenance/car/<car_id>", methods=["DELETE"])
def remove_maintenance(car_id: str):
    removed = get_fleet().data.remove_maintenance_entry(car_id)
    return jsonify({"removed": removed})


# =============================================================================
# Maintenance plans
# =============================================================================


@app.route("/api/maintenance-plans", methods=["GET"])
def list_plans():
    plans = get_fleet().planner.list_plans(request.args.get("carId"))
    return jsonify([plan_to_dict(p) for p in plans])


@app.route("/api/maintenance-plans", methods=["POST"])
def create_plan():
    body = json_body()
    if not body.get("carId"):
        raise ValidationError("Select a car", field="carId")
    plan = plan_from_dict({**body, "id": body.get("id") or new_id("plan")})
    plan = get_fleet().planner.save_draft(plan)
    return jsonify(plan_to_dict(plan)), 201


@app.route("/api/maintenance-plans/<plan_id>", methods=["GET"])
def get_plan(plan_id: str):
    return jsonify(plan_to_dict(get_fleet().planner.load_plan(plan_id)))


@app.route("/api/maintenance-plans/<plan_id>", methods=["PUT"])
def update_plan(plan_id: str):
    planner = get_fleet().planner
    current = planner.load_plan(plan_id)
    merged = {**plan_to_dict(current), **json_body(), "id": plan_id}
    plan = planner.save_draft(plan_from_dict(merged))
    return jsonify(plan_to_dict(plan))


@app.route("/api/maintenance-plans/<plan_id>", methods=["DELETE"])
def delete_plan(plan_id: str):
    get_fleet().planner.delete_plan(plan_id)
    return "", 204


# =============================================================================
# Service shops
# =============================================================================


@app.route("/api/service-shops", methods=["GET"])
def list_shops():
    return jsonify([shop_to_dict(s) for s in get_fleet().shops.list_shops()])


@app.route("/api/service-shops", methods=["POST"])
def create_shop():
    body = json_body()
    shop = get_fleet().shops.save_shop(
        body.get("name"), body.get("contacts"), body.get("rating", 5)
    )
    return jsonify(shop_to_dict(shop)), 201


@app.route("/api/service-shops/<shop_id>", methods=["PUT"])
def update_shop(shop_id: str):
    shops = get_fleet().shops
    current = shops.get_shop(shop_id)
    body = json_body()
    shop = shops.save_shop(
        body.get("name", current.name),
        body.get("contacts", current.contacts),
        body.get("rating", current.rating),
        shop_id=shop_id,
    )
    return jsonify(shop_to_dict(shop))


@app.route("/api/service-shops/<shop_id>", methods=["DELETE"])
def delete_shop(shop_id: str):
    clear = get_fleet().shops.delete_shop(shop_id, request.args.get("selected"))
    return jsonify({"clearSelection": clear})


# =============================================================================
# Per-car blobs and fleet totals
# =============================================================================


@app.route("/api/blobs/<key>", methods=["GET"])
def get_blob(key: str):
    value = get_fleet().provider.load_blob(key)
    if value is None:
        raise NotFoundError(f"Nothing stored under '{key}'")
    return jsonify(value)


@app.route("/api/blobs/<key>", methods=["PUT"])
def put_blob(key: str):
    value = request.get_json(silent=True)
    if value is None:
        raise ValidationError("Expected a JSON body")
    get_fleet().provider.save_blob(key, value)
    return "", 204


@app.route("/api/blobs/<key>", methods=["DELETE"])
def delete_blob(key: str):
    get_fleet().provider.remove_blob(key)
    return "", 204


@app.route("/api/fleet/stats", methods=["GET"])
def fleet_stats():
    fleet = get_fleet()
    stats = get_fleet_stats(fleet.data)
    stats["alerts"] = fleet.alerts.get_alert_stats()
    return jsonify(stats)


# =============================================================================
# Auth hand-off
# =============================================================================


class SessionStorage:
    """get_item/set_item over the Flask session, for the hand-off helpers."""

    def get_item(self, key):
        return session.get(key)

    def set_item(self, key, value):
        session[key] = value


@app.route("/app")
def main_app():
    """
    Entry point the marketing site redirects to.

    Stores a token passed in the query, strips the hand-off parameters and
    sends users without a token to the marketing login page.
    """
    config = load_config()
    handoff = consume_auth_params(request.url, SessionStorage(), config.marketing_url)
    if not handoff.authenticated:
        return redirect(handoff.login_url)
    if handoff.clean_url != request.url:
        target = handoff.clean_url
        if handoff.redirect:
            target = f"{target.split('#')[0]}#{handoff.redirect}"
        return redirect(target)
    return jsonify({"authenticated": True})


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    app.run(debug=True, host="0.0.0.0", port=8080)
