#!/usr/bin/env python3
"""Validate compliance data store YAML files against the schema."""
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from jsonschema import validate, ValidationError

from compliance.calculations import to_datetime
from compliance.service_definition import MAINTENANCE_SERVICES
from compliance.store import DOCUMENT_COLLECTIONS

VEHICLE_DATE_FIELDS = sorted(
    {d.date_field for d in MAINTENANCE_SERVICES} | {"lastServiceUpdate", "lastUpdated"}
)
DOCUMENT_DATE_FIELDS = ("expireDate", "startDate", "renewedDate", "lastUpdated")


def load_schema() -> dict:
    """Load the JSON schema from schema.yaml."""
    schema_path = Path(__file__).parent / "schema.yaml"
    with open(schema_path) as f:
        return yaml.safe_load(f)


def check_store(data: Dict[str, Any]) -> List[str]:
    """
    Checks the schema cannot express.

    Every license and insurance document must point at a vehicle of the
    same user, and every stored date must parse.
    """
    errors = []
    for owner_id, user in (data.get("users") or {}).items():
        user = user or {}
        vehicles = user.get("vehicles") or {}
        vehicle_ids = {str(v) for v in vehicles}

        for vehicle_id, fields in vehicles.items():
            for name in VEHICLE_DATE_FIELDS:
                value = (fields or {}).get(name)
                if value and to_datetime(value) is None:
                    errors.append(f"{owner_id}/vehicles/{vehicle_id}: invalid {name} {value!r}")

        for collection in DOCUMENT_COLLECTIONS.values():
            for document_id, fields in (user.get(collection) or {}).items():
                fields = fields or {}
                if str(fields.get("vehicleId")) not in vehicle_ids:
                    errors.append(
                        f"{owner_id}/{collection}/{document_id}: "
                        f"unknown vehicle {fields.get('vehicleId')!r}"
                    )
                for name in DOCUMENT_DATE_FIELDS:
                    value = fields.get(name)
                    if value and to_datetime(value) is None:
                        errors.append(f"{owner_id}/{collection}/{document_id}: invalid {name} {value!r}")
    return errors


def validate_store_file(filepath: Path, schema: dict) -> list[str]:
    """Validate a single data store file. Returns list of errors."""
    errors = []
    try:
        with open(filepath) as f:
            data = yaml.safe_load(f)
        validate(instance=data, schema=schema)
        errors.extend(check_store(data))
    except yaml.YAMLError as e:
        errors.append(f"YAML parse error: {e}")
    except ValidationError as e:
        errors.append(f"Schema validation error: {e.message}")
        if e.path:
            errors.append(f"  at path: {'.'.join(str(p) for p in e.path)}")
    except Exception as e:
        errors.append(f"Error: {e}")
    return errors


def main(argv: Optional[List[str]] = None):
    """Validate the given files, or every YAML file in the data/ directory."""
    argv = sys.argv[1:] if argv is None else argv
    if argv:
        yaml_files = [Path(p) for p in argv]
    else:
        data_dir = Path(__file__).parent / "data"
        if not data_dir.exists():
            print(f"Error: data directory not found: {data_dir}")
            return 1
        yaml_files = list(data_dir.glob("*.yaml")) + list(data_dir.glob("*.yml"))

    if not yaml_files:
        print("Warning: No YAML files to validate")
        return 0

    schema = load_schema()
    failed = 0
    for filepath in sorted(yaml_files):
        errors = validate_store_file(filepath, schema)
        if not errors:
            print(f"OK: {filepath.name}")
            continue
        failed += 1
        print(f"FAIL: {filepath.name}")
        for error in errors:
            print(f"  {error}")

    if failed:
        print(f"\n{failed} of {len(yaml_files)} file(s) failed validation")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
