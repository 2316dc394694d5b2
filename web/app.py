"""Flask JSON API for vehicle compliance tracking."""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

from flask import Flask, jsonify, request

from compliance import (
    ComplianceState,
    DocumentNotFoundError,
    InvalidMileageError,
    LocalNotificationService,
    NotAuthenticatedError,
    NotificationError,
    Obligation,
    ReminderScheduler,
    StoreError,
    UnknownCategoryError,
    VehicleNotFoundError,
    YamlDocumentStore,
    load_settings,
    summarize,
)
from compliance.calculations import to_datetime

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.secret_key = os.environ.get("SECRET_KEY", "dev-secret-key-change-in-prod")

# Path to data files (relative to project root)
PROJECT_DIR = Path(__file__).parent.parent
app.config["DATA_FILE"] = os.environ.get(
    "COMPLIANCE_DATA_FILE", str(PROJECT_DIR / "data" / "garage.yaml")
)
app.config["OUTBOX"] = os.environ.get(
    "COMPLIANCE_OUTBOX", str(PROJECT_DIR / "reminders.yaml")
)
app.config["SETTINGS"] = load_settings()

OWNER_HEADER = "X-Owner-Id"


def get_owner() -> str:
    """Owner id of the caller, from the X-Owner-Id header."""
    owner_id = request.headers.get(OWNER_HEADER, "").strip()
    if not owner_id:
        raise NotAuthenticatedError("Missing owner id")
    return owner_id


def get_state() -> ComplianceState:
    return ComplianceState(YamlDocumentStore(app.config["DATA_FILE"]), app.config["SETTINGS"])


def get_scheduler() -> ReminderScheduler:
    notifier = LocalNotificationService(outbox=app.config["OUTBOX"])
    return ReminderScheduler(
        YamlDocumentStore(app.config["DATA_FILE"]), notifier, app.config["SETTINGS"]
    )


def get_as_of() -> datetime:
    """The asOf query parameter, or now."""
    value = request.args.get("asOf")
    if not value:
        return datetime.now()
    as_of = to_datetime(value)
    if as_of is None:
        raise ValueError(f"Invalid asOf date: {value}")
    return as_of


def serialize_value(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


def obligation_to_dict(obligation: Obligation) -> Dict[str, Any]:
    """JSON form of an Obligation, in the shape the mobile UI expects."""
    return {
        "id": f"{obligation.vehicle_id}_{obligation.category}",
        "vehicleId": obligation.vehicle_id,
        "vehicleName": obligation.vehicle_name,
        "category": obligation.category,
        "serviceType": obligation.title,
        "basis": obligation.basis.value,
        "nextDue": serialize_value(obligation.next_due),
        "lastValue": serialize_value(obligation.last_value),
        "remaining": obligation.remaining,
        "classification": obligation.classification.name.lower(),
        "priority": obligation.severity.name.lower(),
        "label": obligation.label,
        "message": obligation.message,
        "daysEstimate": obligation.days_estimate,
        "isDocument": obligation.is_document,
        "reference": obligation.reference,
    }


def error_response(message: str, status: int):
    return jsonify({"error": message}), status


@app.errorhandler(NotAuthenticatedError)
def handle_not_authenticated(e):
    return error_response(str(e), 401)


@app.errorhandler(VehicleNotFoundError)
@app.errorhandler(DocumentNotFoundError)
def handle_not_found(e):
    return error_response(str(e), 404)


@app.errorhandler(UnknownCategoryError)
@app.errorhandler(InvalidMileageError)
@app.errorhandler(ValueError)
def handle_bad_request(e):
    return error_response(str(e), 400)


@app.errorhandler(StoreError)
@app.errorhandler(NotificationError)
def handle_service_error(e):
    logger.error("External service failure: %s", e)
    return error_response("Failed to load vehicle data. Please try again.", 502)


@app.route("/obligations")
async def list_obligations():
    """All obligations for the caller's vehicles."""
    owner_id = get_owner()
    include_current = request.args.get("all", "").lower() == "true"

    pairs, failed = await get_state().evaluate_owner(owner_id, get_as_of(), include_current)
    all_obligations = [ob for _, obligations in pairs for ob in obligations]

    return jsonify({
        "ownerId": owner_id,
        "summary": summarize(all_obligations),
        "vehicles": [
            {
                "vehicleId": vehicle.vehicle_id,
                "name": vehicle.name,
                "plate": vehicle.plate,
                "mileage": vehicle.current_mileage,
                "obligations": [obligation_to_dict(ob) for ob in obligations],
            }
            for vehicle, obligations in pairs
        ],
        "failedVehicles": failed,
    })


@app.route("/vehicles/<vehicle_id>/obligations")
async def vehicle_obligations(vehicle_id: str):
    """Obligations for a single vehicle."""
    owner_id = get_owner()
    include_current = request.args.get("all", "").lower() == "true"
    obligations = await get_state().evaluate(owner_id, vehicle_id, get_as_of(), include_current)
    return jsonify({
        "vehicleId": vehicle_id,
        "obligations": [obligation_to_dict(ob) for ob in obligations],
    })


@app.route("/vehicles/<vehicle_id>/done/<category>", methods=["POST"])
async def mark_done(vehicle_id: str, category: str):
    """Mark a maintenance item done; returns the re-evaluated vehicle."""
    owner_id = get_owner()
    obligations = await get_state().mark_done(owner_id, vehicle_id, category)
    return jsonify({
        "vehicleId": vehicle_id,
        "category": category,
        "obligations": [obligation_to_dict(ob) for ob in obligations],
    })


@app.route("/vehicles/<vehicle_id>/service", methods=["POST"])
async def record_service(vehicle_id: str):
    """Record last-service mileages and dates; returns the re-evaluated vehicle."""
    owner_id = get_owner()
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict) or not payload:
        return error_response("Please enter at least one service value", 400)

    obligations = await get_state().record_service(owner_id, vehicle_id, payload)
    return jsonify({
        "vehicleId": vehicle_id,
        "obligations": [obligation_to_dict(ob) for ob in obligations],
    })


@app.route("/vehicles/<vehicle_id>/mileage", methods=["POST"])
async def update_mileage(vehicle_id: str):
    """Update the odometer reading."""
    owner_id = get_owner()
    payload = request.get_json(silent=True) or {}
    if "mileage" not in payload:
        return error_response("Please enter a mileage value", 400)

    obligations = await get_state().update_mileage(owner_id, vehicle_id, payload["mileage"])
    return jsonify({
        "vehicleId": vehicle_id,
        "obligations": [obligation_to_dict(ob) for ob in obligations],
    })


@app.route("/vehicles/<vehicle_id>/renew/<doc_type>", methods=["POST"])
async def renew_document(vehicle_id: str, doc_type: str):
    """Extend a license or insurance document by one term."""
    owner_id = get_owner()
    document = await get_state().renew_document(owner_id, vehicle_id, doc_type)
    return jsonify({
        "vehicleId": vehicle_id,
        "type": doc_type,
        "documentId": document.document_id,
        "expireDate": document.expire_date,
        "renewedDate": document.renewed_date,
    })


@app.route("/vehicles/<vehicle_id>/documents/<doc_type>", methods=["POST"])
async def save_document(vehicle_id: str, doc_type: str):
    """Add or replace the license or insurance details of a vehicle."""
    owner_id = get_owner()
    payload = request.get_json(silent=True) or {}
    if not payload.get("expireDate") or not payload.get("number"):
        return error_response("Please enter the expiry date and number", 400)

    document = await get_state().save_document(
        owner_id,
        vehicle_id,
        doc_type,
        payload["expireDate"],
        payload["number"],
        payload.get("startDate"),
    )
    return jsonify({
        "vehicleId": vehicle_id,
        "type": doc_type,
        "documentId": document.document_id,
        "expireDate": document.expire_date,
        "number": document.reference_number,
    })


@app.route("/reminders", methods=["POST"])
async def reschedule_reminders():
    """Cancel and reschedule all of the caller's reminders."""
    owner_id = get_owner()
    report = await get_scheduler().reschedule_all(owner_id)
    return jsonify({
        "permission": report.permission,
        "vehicles": report.vehicles,
        "scheduled": report.scheduled,
        "failedReminders": report.failed_reminders,
        "failedVehicles": report.failed_vehicles,
    })


@app.route("/reminders", methods=["GET"])
async def list_reminders():
    """Pending reminders for the caller."""
    owner_id = get_owner()
    reminders = await get_scheduler().notifier.list_scheduled(owner_id)
    return jsonify({"reminders": [r.to_dict() for r in reminders]})


if __name__ == "__main__":
    # Run with debug mode for development
    # Using 5001 to avoid conflict with macOS AirPlay Receiver on 5000
    app.run(debug=True, host="0.0.0.0", port=5001)
