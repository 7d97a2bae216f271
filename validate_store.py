#!/usr/bin/env python3
"""Validate fleet store files against the schema."""
import argparse
import json
import sys
from pathlib import Path

import yaml
from jsonschema import validate, ValidationError

# Keys holding plain strings rather than JSON documents
SCALAR_KEYS = {
    "auth_token",
    "csrf_token",
    "refresh_token",
    "currentCarId",
    "use_backend_override",
    "cookieConsent",
    "devMode",
}


def load_schema() -> dict:
    """Load the JSON schema from schema.yaml."""
    schema_path = Path(__file__).parent / "schema.yaml"
    with open(schema_path) as f:
        return yaml.safe_load(f)


def decode_store(items: dict) -> dict:
    """JSON-decode every value of a store file except the scalar keys."""
    decoded = {}
    for key, raw in items.items():
        if key in SCALAR_KEYS:
            continue
        try:
            decoded[key] = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise ValueError(f"key '{key}' does not hold valid JSON: {e}") from e
    return decoded


def validate_store_file(filepath: Path, schema: dict) -> list[str]:
    """Validate a single store file. Returns list of errors."""
    errors = []
    try:
        with open(filepath) as f:
            items = yaml.safe_load(f) or {}
        if not isinstance(items, dict):
            raise ValueError("store file must be a mapping of keys to values")
        validate(instance=decode_store(items), schema=schema)
    except yaml.YAMLError as e:
        errors.append(f"YAML parse error: {e}")
    except ValidationError as e:
        errors.append(f"Schema validation error: {e.message}")
        if e.path:
            errors.append(f"  at path: {'.'.join(str(p) for p in e.path)}")
    except (OSError, ValueError) as e:
        errors.append(f"Error: {e}")
    return errors


def main(argv=None):
    """Validate each store file given on the command line."""
    parser = argparse.ArgumentParser(description="Validate fleet store files")
    parser.add_argument("store_files", type=Path, nargs="+")
    args = parser.parse_args(argv)

    schema = load_schema()
    all_valid = True
    for filepath in args.store_files:
        if not filepath.exists():
            print(f"FAIL: {filepath.name}")
            print(f"  File not found: {filepath}")
            all_valid = False
            continue
        errors = validate_store_file(filepath, schema)
        if errors:
            print(f"FAIL: {filepath.name}")
            for error in errors:
                print(f"  {error}")
            all_valid = False
        else:
            print(f"OK: {filepath.name}")

    return 0 if all_valid else 1


if __name__ == "__main__":
    sys.exit(main())
