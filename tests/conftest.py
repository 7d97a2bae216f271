"""Shared fixtures: a fleet over a temporary store file."""

import pytest

from fleet import Fleet, FleetEvents, LocalProvider, LocalStorage


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(tmp_path / "store.yaml")


@pytest.fixture
def events():
    return FleetEvents()


@pytest.fixture
def fleet(storage, events):
    return Fleet(LocalProvider(storage, events), events)


@pytest.fixture
def car(fleet):
    return fleet.data.save_car(
        "Honda",
        "Accord",
        2008,
        mileage=85000,
        plate_number="A123BC",
        last_service="2024-07-15",
    )
