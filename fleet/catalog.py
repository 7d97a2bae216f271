"""Manufacturer default maintenance regulations."""

from typing import List

from .regulation import Regulation

HONDA = [
    ("Engine oil and filter replacement", 10000, 6,
     "0W-20/5W-30 only. Shorten to 8000 km under severe conditions"),
    ("Timing chain and tensioner inspection", 60000, 48,
     "Check chain tension, guide and tensioner wear. Mandatory if noisy"),
    ("Engine air filter replacement", 30000, 24,
     "Critical for K24A1 due to direct air intake"),
    ("VTEC system flush", 50000, 36,
     "Clean VTEC solenoid and filter screen"),
    ("Spark plug replacement", 100000, 60, "NGK IZFR6K11"),
    ("Brake fluid replacement", 30000, 24, "DOT 3/4. Moisture affects ABS"),
    ("Automatic transmission fluid replacement", 60000, 48,
     "Honda ATF DW-1 only"),
    ("Coolant replacement", 100000, 60,
     "Honda Type 2 (blue). Do not mix with other types"),
    ("Valve clearance adjustment", 40000, 36, "Requires special tools"),
    ("Alternator belt replacement", 80000, 60,
     "Check tensioner and idler pulleys"),
    ("Throttle body cleaning", 50000, 36, "Unstable idle is typical for K24"),
    ("Suspension diagnostics", 20000, 12, "Pay attention to rear arms"),
]

TOYOTA = [
    ("Engine oil and filter replacement", 10000, 6,
     "Synthetic 0W-20/5W-30 recommended"),
    ("Air filter replacement", 30000, 24, "Engine air filter"),
    ("Brake fluid replacement", 40000, 24, "DOT 3/4"),
    ("Timing belt replacement", 90000, 60, "Replace belt and tensioner"),
    ("Spark plug replacement", 120000, 60, None),
    ("Coolant replacement", 100000, 60, None),
]

BMW = [
    ("Engine oil and filter replacement", 15000, 12,
     "BMW LL-01/LL-04 oil. Interval depends on operating conditions"),
    ("Brake fluid replacement", 20000, 24, "DOT 4. Every 2 years"),
    ("Air filter replacement", 30000, 24, "Engine air filter"),
    ("Oil filter replacement", 15000, 12, None),
    ("Brake pad inspection", 20000, 12, None),
]

MERCEDES = [
    ("Engine oil and filter replacement", 20000, 12,
     "MB 229.5 oil. Long service interval"),
    ("Brake fluid replacement", 20000, 24, "DOT 4+. Every 2 years"),
    ("Air filter replacement", 40000, 24, "Engine air filter"),
    ("Brake system inspection", 20000, 12, "Pads and discs"),
]

GENERIC = [
    ("Engine oil and filter replacement", 10000, 6,
     "Standard oil and filter change"),
    ("Air filter replacement", 30000, 24, "Engine air filter"),
    ("Brake fluid replacement", 30000, 24, None),
    ("Spark plug replacement", 60000, 48, None),
]

MANUFACTURERS = {
    "honda": HONDA,
    "toyota": TOYOTA,
    "bmw": BMW,
    "mercedes": MERCEDES,
}


def default_regulations(brand: str) -> List[Regulation]:
    """Get manufacturer default regulations, generic when the brand is unknown."""
    brand_lower = (brand or "").lower()
    rows = GENERIC
    for key, catalog in MANUFACTURERS.items():
        if key in brand_lower:
            rows = catalog
            break
    return [Regulation(op, miles, months, notes) for op, miles, months, notes in rows]
