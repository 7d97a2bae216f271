#!/usr/bin/env python3
"""Tests for validate_store schema validation."""

import json

import pytest

from fleet.regulation import Regulation
from fleet.due import save_car_guide
from validate_store import decode_store, load_schema, main, validate_store_file


def alert_form(car_id):
    return {
        "carId": car_id,
        "type": "problem",
        "priority": "critical",
        "description": "Squeaking brakes",
        "location": "Front axle",
        "mileage": 85000,
    }


class TestLoadSchema:
    """Tests for load_schema function."""

    def test_has_collections(self):
        """Test the schema describes every collection."""
        schema = load_schema()
        for key in ("cars", "fleet-alerts", "maintenance-plans", "service-shops"):
            assert key in schema["properties"]


class TestDecodeStore:
    def test_skips_scalar_keys(self):
        """Test keys that are not collections are skipped."""
        decoded = decode_store({"auth_token": "abc", "cars": "[]"})
        assert decoded == {"cars": []}

    def test_bad_json(self):
        """Test a key holding bad JSON is reported."""
        with pytest.raises(ValueError, match="cars"):
            decode_store({"cars": "[oops"})


class TestValidateStoreFile:
    """Tests for validate_store_file function."""

    def test_store_written_by_fleet_is_valid(self, fleet, car, storage):
        """Test a store written by the fleet passes the schema."""
        alert = fleet.alerts.create_alert(alert_form(car.id))
        fleet.alerts.add_to_plan(alert.id)
        fleet.shops.save_shop("Garage 21", "+1 555 0101", rating=4)
        save_car_guide(fleet.data, car.id, [Regulation("Oil", 10000, 6)])
        storage.set_item("auth_token", "tok")

        assert validate_store_file(storage.path, load_schema()) == []

    def test_negative_mileage(self, tmp_path):
        """Test a negative mileage fails the schema."""
        path = tmp_path / "store.yaml"
        path.write_text("cars: '%s'\n" % json.dumps(
            [{"id": "c1", "brand": "Honda", "model": "Accord", "year": 2008, "mileage": -5}]
        ))
        errors = validate_store_file(path, load_schema())
        assert errors[0].startswith("Schema validation error")
        assert "cars.0.mileage" in errors[1]

    def test_unknown_reading_type(self, tmp_path):
        """Test a mileage reading with an unknown source fails the schema."""
        path = tmp_path / "store.yaml"
        path.write_text("mileageData: '%s'\n" % json.dumps(
            [{"id": "m1", "carId": "c1", "date": "2024-08-01", "mileage": 1000, "type": "guess"}]
        ))
        errors = validate_store_file(path, load_schema())
        assert "mileageData.0.type" in errors[1]

    def test_zero_interval_in_guide(self, tmp_path):
        """Test a zero interval in a guide fails the schema."""
        path = tmp_path / "store.yaml"
        path.write_text("car-maintenance-guide-c1: '%s'\n" % json.dumps(
            {"carId": "c1", "regulations": [{"operation": "Oil", "mileage": 0, "period": 6}]}
        ))
        assert validate_store_file(path, load_schema())

    def test_not_json(self, tmp_path):
        """Test a key holding text that is not JSON is reported."""
        path = tmp_path / "store.yaml"
        path.write_text("fleet-alerts: 'not json'\n")
        errors = validate_store_file(path, load_schema())
        assert errors[0].startswith("Error: key 'fleet-alerts'")

    def test_yaml_error(self, tmp_path):
        """Test an unreadable YAML store is reported."""
        path = tmp_path / "store.yaml"
        path.write_text("cars: [unclosed\n")
        assert validate_store_file(path, load_schema())[0].startswith("YAML parse error")


class TestMain:
    def test_reports_each_file(self, fleet, car, storage, tmp_path, capsys):
        """Test every file checked is reported."""
        missing = tmp_path / "missing.yaml"
        assert main([str(storage.path), str(missing)]) == 1
        out = capsys.readouterr().out
        assert "OK: store.yaml" in out
        assert "FAIL: missing.yaml" in out

    def test_all_valid(self, fleet, car, storage):
        """Test a valid store exits with zero."""
        assert main([str(storage.path)]) == 0
