#!/usr/bin/env python3
"""
Command line fleet maintenance tracker.

Commands:
  cars         - List cars with their current status
  add-car      - Add a car to the fleet
  update-miles - Record a new odometer reading
  mileage      - Show the odometer history of a car
  status       - Show derived status of one or all cars
  due          - Show periodic maintenance due for a car
  alerts       - List alerts
  report       - Report a problem or recommendation
  archive      - Archive an alert
  restore      - Restore an archived alert
  plan-toggle  - Add an alert to its car's draft plan, or take it out
  plans        - List maintenance plans
  plan         - Create a maintenance plan for a car
  send         - Send a car to maintenance with a saved plan
  return       - Return a car from maintenance
  shops        - List service shops
  add-shop     - Add or edit a service shop
  delete-shop  - Delete a service shop
  stats        - Fleet and alert totals
  reconcile    - Repair alert inPlan flags from plan contents
"""

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from tabulate import tabulate
from typing import List, Optional

from fleet import (
    Alert,
    CarStatus,
    DueItem,
    FleetError,
    LocalStorage,
    MaintenancePlan,
    PeriodicOperation,
    RepairOperation,
    load_config,
    open_fleet,
)
from fleet.car_status import get_car_status_info, get_fleet_stats, get_multiple_car_status_info
from fleet.data_service import new_id
from fleet.due import calculate_car_due

logger = logging.getLogger("tracker")

# =============================================================================
# Formatting helpers
# =============================================================================


def format_km(km: Optional[int]) -> str:
    """Format a distance for display."""
    return f"{km:,} km" if km is not None else "-"


def format_cost(cost: Optional[float]) -> str:
    """Format cost for display."""
    return f"{cost:,.2f}" if cost is not None else "-"


def format_months(months: Optional[int]) -> str:
    if months is None:
        return "-"
    return f"{months} mo"


def truncate(text: Optional[str], max_len: int = 40) -> str:
    """Truncate text with ellipsis if too long."""
    if text is None:
        return "-"
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def make_due_table(items: List[DueItem]) -> List[List[str]]:
    """Convert due items to table rows."""
    rows = []
    for item in items:
        rows.append(
            [
                "x" if item.selected else "",
                item.operation,
                f"{format_km(item.mileage_interval)} / {format_months(item.period_months)}",
                format_km(item.mileage_until_next),
                format_months(item.months_until_next),
                item.priority.value,
                "DUE" if item.is_due else "",
            ]
        )
    return rows


def make_alert_table(alerts: List[Alert]) -> List[List[str]]:
    """Convert alerts to table rows."""
    rows = []
    for alert in alerts:
        rows.append(
            [
                alert.id,
                alert.car_name or alert.car_id,
                alert.priority,
                alert.type,
                truncate(f"{alert.location}: {alert.description}"),
                format_km(alert.mileage),
                (alert.reported_at or "-")[:10],
                alert.status,
                "yes" if alert.in_plan else "",
            ]
        )
    return rows


def make_plan_table(plans: List[MaintenancePlan]) -> List[List[str]]:
    """Convert plans to table rows."""
    rows = []
    for plan in plans:
        rows.append(
            [
                plan.id,
                plan.car_name or plan.car_id,
                plan.status,
                plan.planned_date or "-",
                plan.planned_completion_date or "-",
                len(plan.periodic_operations),
                len(plan.repair_operations),
                format_cost(plan.total_estimated_cost),
                plan.service_provider or "-",
            ]
        )
    return rows


# =============================================================================
# Car commands
# =============================================================================


def cmd_cars(fleet, args):
    """List cars with their current status."""
    cars = fleet.data.list_cars()
    if not cars:
        print("No cars in the fleet.")
        return 0
    statuses = get_multiple_car_status_info(fleet.data, [c.id for c in cars])
    rows = []
    for car in cars:
        info = statuses[car.id]
        rows.append(
            [
                car.id,
                car.name,
                car.plate_number or "-",
                format_km(car.mileage),
                info.label,
                car.last_service or "-",
                car.next_service or "-",
            ]
        )
    headers = ["ID", "Car", "Plate", "Mileage", "Status", "Last Service", "Next Service"]
    print(tabulate(rows, headers=headers, tablefmt="simple"))
    return 0


def cmd_add_car(fleet, args):
    """Add a car to the fleet."""
    car = fleet.data.save_car(
        args.brand,
        args.model,
        args.year,
        mileage=args.mileage,
        vin=args.vin,
        plate_number=args.plate,
        nickname=args.nickname,
        last_service=args.last_service,
    )
    print(f"Added {car.name} ({car.id}).")
    return 0


def cmd_update_miles(fleet, args):
    """Record a new odometer reading."""
    car = fleet.data.get_car(args.car_id)
    print(f"Car: {car.name}")
    print(f"Current mileage: {format_km(car.mileage)}")
    print(f"New mileage:     {format_km(args.mileage)}")
    print()

    if args.dry_run:
        print("(dry run - no changes made)")
        return 0

    fleet.data.update_mileage(args.car_id, args.mileage)
    print("Mileage updated.")
    return 0


def cmd_mileage(fleet, args):
    """Show the odometer history of a car."""
    car = fleet.data.get_car(args.car_id)
    readings = fleet.data.list_mileage_history(car.id)
    print(f"Mileage history: {car.name}")
    print()
    if not readings:
        print("No readings recorded.")
        return 0

    rows = []
    previous = None
    for reading in readings:
        driven = reading.mileage - previous if previous is not None else None
        rows.append([reading.date, format_km(reading.mileage), format_km(driven), reading.type])
        previous = reading.mileage
    print(tabulate(rows, headers=["Date", "Mileage", "Driven", "Source"], tablefmt="simple"))
    return 0


def cmd_status(fleet, args):
    """Show derived status of one or all cars."""
    if args.car_id:
        car = fleet.data.get_car(args.car_id)
        info = get_car_status_info(fleet.data, car.id)
        print(f"Car: {car.name}")
        print(f"Status: {info.label}")
        print(f"Active alerts: {info.alert_count} ({info.critical_alert_count} critical)")
        if info.is_in_maintenance:
            entry = fleet.data.find_maintenance_entry(car.id)
            print(f"In maintenance since {entry.planned_date or '-'}"
                  f" at {entry.service_provider or '-'}")
        return 0

    cars = fleet.data.list_cars()
    statuses = get_multiple_car_status_info(fleet.data, [c.id for c in cars])
    rows = [
        [car.name, statuses[car.id].label, statuses[car.id].alert_count,
         statuses[car.id].critical_alert_count]
        for car in cars
    ]
    headers = ["Car", "Status", "Alerts", "Critical"]
    print(tabulate(rows, headers=headers, tablefmt="simple"))
    return 0


def cmd_due(fleet, args):
    """Show periodic maintenance due for a car."""
    car = fleet.data.get_car(args.car_id)
    items = calculate_car_due(fleet.data, car.id, as_of=args.as_of)

    print(f"Car: {car.name}")
    print(f"Mileage: {format_km(car.mileage)}")
    print(f"Last service: {car.last_service or '-'}")
    print()

    if not args.all:
        items = [i for i in items if i.priority.value != "low"]
    if not items:
        print("Nothing due.")
        return 0
    headers = ["Sel", "Operation", "Interval", "Remaining", "Months", "Priority", ""]
    print(tabulate(make_due_table(items), headers=headers, tablefmt="simple"))
    return 0


# =============================================================================
# Alert commands
# =============================================================================


def cmd_alerts(fleet, args):
    """List alerts, most urgent first."""
    alerts = fleet.alerts.list_alerts(
        car_id=args.car, status=args.status, priority=args.priority, type=args.type
    )
    if not alerts:
        print("No alerts.")
        return 0
    headers = ["ID", "Car", "Priority", "Type", "Problem", "Mileage", "Reported",
               "Status", "In Plan"]
    print(tabulate(make_alert_table(alerts), headers=headers, tablefmt="simple"))
    return 0


def cmd_report(fleet, args):
    """Report a problem or recommendation."""
    alert = fleet.alerts.create_alert(
        {
            "carId": args.car_id,
            "type": args.type,
            "priority": args.priority,
            "description": args.description,
            "location": args.location,
            "mileage": args.mileage,
        }
    )
    print(f"Alert {alert.id} reported for {alert.car_name}.")
    return 0


def cmd_archive(fleet, args):
    alert = fleet.alerts.archive_alert(args.alert_id)
    print(f"Alert {alert.id} archived.")
    return 0


def cmd_restore(fleet, args):
    alert = fleet.alerts.restore_alert(args.alert_id)
    print(f"Alert {alert.id} restored.")
    return 0


def cmd_plan_toggle(fleet, args):
    alert = fleet.alerts.toggle_plan(args.alert_id)
    if alert.in_plan:
        print(f"Alert {alert.id} added to the draft plan.")
    else:
        print(f"Alert {alert.id} removed from its plan.")
    return 0


# =============================================================================
# Plan commands
# =============================================================================


def cmd_plans(fleet, args):
    """List maintenance plans."""
    plans = fleet.planner.list_plans(args.car)
    if not plans:
        print("No maintenance plans.")
        return 0
    headers = ["ID", "Car", "Status", "Start", "Completion", "Periodic", "Repairs",
               "Est. Cost", "Provider"]
    print(tabulate(make_plan_table(plans), headers=headers, tablefmt="simple"))
    return 0


def cmd_plan(fleet, args):
    """
    Create a plan for a car.

    Periodic operations default to the high-priority ones; --op replaces
    that selection. Alerts are only included when named with --alert.
    """
    car = fleet.data.get_car(args.car_id)
    due_items, candidates = fleet.planner.build_due_items(car.id)

    if args.op:
        wanted = {op.lower() for op in args.op}
        known = {item.operation.lower() for item in due_items}
        unknown = wanted - known
        if unknown:
            print(f"Error: Unknown operation(s): {', '.join(sorted(unknown))}")
            print("\nAvailable operations:")
            for item in due_items:
                print(f"  {item.operation}")
            return 1
        for item in due_items:
            item.selected = item.operation.lower() in wanted
    wanted_alerts = set(args.alert or [])
    for candidate in candidates:
        candidate.selected = candidate.alert_id in wanted_alerts

    plan = MaintenancePlan(
        id=args.id or new_id("plan"),
        car_id=car.id,
        car_name=car.name,
        planned_date=args.date,
        planned_completion_date=args.completion,
        planned_mileage=args.mileage,
        periodic_operations=[
            PeriodicOperation(item.operation, item.priority.value, 0, item.notes or "")
            for item in due_items
            if item.selected
        ],
        repair_operations=[
            RepairOperation(c.alert_id, c.description, c.priority)
            for c in candidates
            if c.selected
        ],
        service_provider=args.provider or "",
        notes=args.notes or "",
    )
    if args.send:
        entry = fleet.planner.send_to_maintenance(plan)
        print(f"Plan {plan.id} saved. {car.name} is now in maintenance ({entry.id}).")
    else:
        fleet.planner.save_plan(plan)
        print(f"Plan {plan.id} saved with {plan.operation_count} operations, "
              f"estimated cost {format_cost(plan.total_estimated_cost)}.")
    return 0


def cmd_send(fleet, args):
    """Send a car to maintenance with a saved plan."""
    plan = fleet.planner.load_plan(args.plan_id)
    entry = fleet.planner.send_to_maintenance(plan)
    print(f"{entry.car_name} sent to maintenance with plan {plan.id}.")
    return 0


def cmd_return(fleet, args):
    """Return a car from maintenance."""
    record = fleet.planner.return_to_service(
        args.car_id, mileage=args.mileage, service_date=args.date
    )
    print(f"{record.car_name} returned to service.")
    print(f"Service record {record.id}: {len(record.operations)} operations, "
          f"total {format_cost(record.total_cost)}")
    return 0


# =============================================================================
# Shop commands
# =============================================================================


def cmd_shops(fleet, args):
    shops = fleet.shops.list_shops()
    if not shops:
        print("No service shops.")
        return 0
    rows = [[s.id, s.name, s.contacts, "*" * s.rating] for s in shops]
    print(tabulate(rows, headers=["ID", "Name", "Contacts", "Rating"], tablefmt="simple"))
    return 0


def cmd_add_shop(fleet, args):
    shop = fleet.shops.save_shop(args.name, args.contacts, args.rating, shop_id=args.id)
    print(f"Saved service shop {shop.name} ({shop.id}).")
    return 0


def cmd_delete_shop(fleet, args):
    fleet.shops.delete_shop(args.shop_id)
    print(f"Deleted service shop {args.shop_id}.")
    return 0


# =============================================================================
# Fleet commands
# =============================================================================


def cmd_stats(fleet, args):
    """Fleet and alert totals."""
    stats = get_fleet_stats(fleet.data)
    rows = [["Cars", stats["total"]]]
    rows.extend([status.label, stats[status.value]] for status in CarStatus)
    rows.append(["Active alerts", stats["activeAlerts"]])
    rows.append(["Critical alerts", stats["criticalAlerts"]])
    print(tabulate(rows, tablefmt="simple"))
    print()

    alert_stats = fleet.alerts.get_alert_stats()
    print(tabulate(sorted(alert_stats.items()), headers=["Alerts", "Count"],
                   tablefmt="simple"))
    return 0


def cmd_reconcile(fleet, args):
    fixed = fleet.alerts.reconcile_in_plan()
    print(f"Corrected {fixed} alert(s).")
    return 0


# =============================================================================
# Main
# =============================================================================

COMMANDS = {
    "cars": cmd_cars,
    "add-car": cmd_add_car,
    "update-miles": cmd_update_miles,
    "mileage": cmd_mileage,
    "status": cmd_status,
    "due": cmd_due,
    "alerts": cmd_alerts,
    "report": cmd_report,
    "archive": cmd_archive,
    "restore": cmd_restore,
    "plan-toggle": cmd_plan_toggle,
    "plans": cmd_plans,
    "plan": cmd_plan,
    "send": cmd_send,
    "return": cmd_return,
    "shops": cmd_shops,
    "add-shop": cmd_add_shop,
    "delete-shop": cmd_delete_shop,
    "stats": cmd_stats,
    "reconcile": cmd_reconcile,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Fleet maintenance tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s fleet.yaml add-car Honda Accord 2008 --mileage 85000 --plate A123BC
  %(prog)s fleet.yaml cars
  %(prog)s fleet.yaml due car_1a2b3c4d5e6f --all
  %(prog)s fleet.yaml report car_1a2b3c4d5e6f --priority critical \\
      --location "Front left wheel" --description "Grinding when braking" --mileage 85200
  %(prog)s fleet.yaml plan-toggle alert_0f9e8d7c6b5a
  %(prog)s fleet.yaml plan car_1a2b3c4d5e6f --date 2024-08-01 --completion 2024-08-02
  %(prog)s fleet.yaml send plan_2b3c4d5e6f70
  %(prog)s fleet.yaml return car_1a2b3c4d5e6f --mileage 85400
""",
    )
    parser.add_argument(
        "store_file",
        type=Path,
        help="Path to the fleet store file (created if missing)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("cars", help="List cars with their current status")

    add_car_parser = subparsers.add_parser("add-car", help="Add a car to the fleet")
    add_car_parser.add_argument("brand", type=str)
    add_car_parser.add_argument("model", type=str)
    add_car_parser.add_argument("year", type=int)
    add_car_parser.add_argument("--mileage", type=int, default=0, help="Odometer in km")
    add_car_parser.add_argument("--vin", type=str)
    add_car_parser.add_argument("--plate", type=str, help="Plate number")
    add_car_parser.add_argument("--nickname", type=str, help="Display name")
    add_car_parser.add_argument(
        "--last-service", type=str, help="Last service date (YYYY-MM-DD)"
    )

    update_miles_parser = subparsers.add_parser(
        "update-miles", help="Record a new odometer reading"
    )
    update_miles_parser.add_argument("car_id", type=str)
    update_miles_parser.add_argument("mileage", type=int, help="Current mileage in km")
    update_miles_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be updated without saving",
    )

    mileage_parser = subparsers.add_parser("mileage", help="Show odometer history")
    mileage_parser.add_argument("car_id", type=str)

    status_parser = subparsers.add_parser("status", help="Show derived car status")
    status_parser.add_argument("car_id", type=str, nargs="?", help="One car (default: all)")

    due_parser = subparsers.add_parser("due", help="Show periodic maintenance due")
    due_parser.add_argument("car_id", type=str)
    due_parser.add_argument(
        "--all", action="store_true", help="Include low-priority operations"
    )
    due_parser.add_argument(
        "--as-of", type=str, help="Evaluate as of this date (YYYY-MM-DD, default: now)"
    )

    alerts_parser = subparsers.add_parser("alerts", help="List alerts")
    alerts_parser.add_argument("--car", type=str, help="Only alerts of this car")
    alerts_parser.add_argument("--status", choices=["active", "archived"])
    alerts_parser.add_argument("--priority", choices=["critical", "unclear", "can-wait"])
    alerts_parser.add_argument("--type", choices=["problem", "recommendation"])

    report_parser = subparsers.add_parser("report", help="Report a problem")
    report_parser.add_argument("car_id", type=str)
    report_parser.add_argument("--description", type=str, required=True)
    report_parser.add_argument("--location", type=str, required=True,
                               help="Where the problem was found")
    report_parser.add_argument("--mileage", type=int, required=True)
    report_parser.add_argument("--type", type=str, default="problem",
                               help="problem or recommendation (default: problem)")
    report_parser.add_argument("--priority", type=str, default="unclear",
                               help="critical, unclear or can-wait (default: unclear)")

    for name, help_text in (
        ("archive", "Archive an alert"),
        ("restore", "Restore an archived alert"),
        ("plan-toggle", "Add an alert to its car's draft plan, or take it out"),
    ):
        alert_parser = subparsers.add_parser(name, help=help_text)
        alert_parser.add_argument("alert_id", type=str)

    plans_parser = subparsers.add_parser("plans", help="List maintenance plans")
    plans_parser.add_argument("--car", type=str, help="Only plans of this car")

    plan_parser = subparsers.add_parser("plan", help="Create a maintenance plan")
    plan_parser.add_argument("car_id", type=str)
    plan_parser.add_argument("--id", type=str, help="Replace the plan with this id")
    plan_parser.add_argument("--date", type=str, help="Planned start date (YYYY-MM-DD)")
    plan_parser.add_argument("--completion", type=str,
                             help="Planned completion date (YYYY-MM-DD)")
    plan_parser.add_argument("--mileage", type=int, help="Planned mileage")
    plan_parser.add_argument("--provider", type=str, help="Service shop name")
    plan_parser.add_argument("--notes", type=str)
    plan_parser.add_argument("--op", action="append",
                             help="Periodic operation to include (repeatable)")
    plan_parser.add_argument("--alert", action="append",
                             help="Alert id to include as a repair (repeatable)")
    plan_parser.add_argument("--send", action="store_true",
                             help="Send the car to maintenance right away")

    send_parser = subparsers.add_parser("send", help="Send a car to maintenance")
    send_parser.add_argument("plan_id", type=str)

    return_parser = subparsers.add_parser("return", help="Return a car from maintenance")
    return_parser.add_argument("car_id", type=str)
    return_parser.add_argument("--mileage", type=int, help="Odometer at pickup")
    return_parser.add_argument("--date", type=str, help="Service date (default: today)")

    subparsers.add_parser("shops", help="List service shops")

    add_shop_parser = subparsers.add_parser("add-shop", help="Add or edit a service shop")
    add_shop_parser.add_argument("name", type=str)
    add_shop_parser.add_argument("contacts", type=str)
    add_shop_parser.add_argument("--rating", type=int, default=5, help="1 to 5")
    add_shop_parser.add_argument("--id", type=str, help="Edit the shop with this id")

    delete_shop_parser = subparsers.add_parser("delete-shop", help="Delete a service shop")
    delete_shop_parser.add_argument("shop_id", type=str)

    subparsers.add_parser("stats", help="Fleet and alert totals")
    subparsers.add_parser("reconcile", help="Repair alert inPlan flags")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = replace(load_config(), store_path=str(args.store_file))
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    try:
        fleet = open_fleet(config, LocalStorage(args.store_file))
        return COMMANDS[args.command](fleet, args)
    except FleetError as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main() or 0)
