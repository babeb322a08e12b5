"""HTTP entrypoint for the box office backend."""

from flask import Flask, request, jsonify
from flask_cors import CORS
from sqlalchemy.exc import SQLAlchemyError
import logging
import threading
from datetime import date, time
import os
from dotenv import load_dotenv
import signal
import atexit
from typing import Any, Dict, Optional, Tuple

load_dotenv()
from database_manager import DatabaseManager, normalize_seat_codes
from errors import (
    BookingAlreadyCancelled, BookingNotCancellable, BookingNotFound, BookingTimeout,
    CustomerNotFound, IdempotencyKeyReused, LayoutNotFound, PersistenceFailure, ShowNotFound,
    TicketNotFound, UnknownSeatCodes,
)
from models import ShowStatus

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///kalari.db')
BOOKING_LOCK_TIMEOUT = float(os.getenv('BOOKING_LOCK_TIMEOUT', 10))
SHOW_DURATION_MINUTES = int(os.getenv('SHOW_DURATION_MINUTES', 30))
STATUS_POLL_INTERVAL = float(os.getenv('STATUS_POLL_INTERVAL', 60))
STATUS_POLLER_ENABLED = env_flag('STATUS_POLLER_ENABLED', True)
SEED_DEMO_DATA = env_flag('SEED_DEMO_DATA', True)

app = Flask(__name__)
CORS(app)

# Instantiate the database layer once so all request handlers reuse the same pool and locks
db = DatabaseManager(
    DATABASE_URL,
    lock_timeout=BOOKING_LOCK_TIMEOUT,
    show_duration_minutes=SHOW_DURATION_MINUTES,
)


def bad_request(message: str, *, details: Optional[Dict[str, Any]] = None):
    """Return a uniform 400 payload, optionally including field-level details."""
    payload: Dict[str, Any] = {"error": message}
    if details:
        payload["details"] = details
    return jsonify(payload), 400


def require_json_object() -> Tuple[Optional[Dict[str, Any]], Optional[Tuple[str, int]]]:
    """Ensure the request body is a JSON object before proceeding."""
    if not request.is_json:
        return None, bad_request("request body must be a JSON object")

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None, bad_request("request body must be a JSON object")

    return data, None


def actor(data: Dict[str, Any], field: str = 'performed_by') -> str:
    """Name of the staff member acting, falling back to the X-User header."""
    value = data.get(field) or request.headers.get('X-User') or 'system'
    return str(value).strip() or 'system'


# Error mapping

@app.errorhandler(ValueError)
def handle_value_error(error):
    return bad_request(str(error))


@app.errorhandler(UnknownSeatCodes)
def handle_unknown_seats(error):
    return bad_request(str(error), details={"unknown_seat_codes": error.codes})


@app.errorhandler(ShowNotFound)
@app.errorhandler(LayoutNotFound)
@app.errorhandler(CustomerNotFound)
@app.errorhandler(BookingNotFound)
@app.errorhandler(TicketNotFound)
def handle_not_found(error):
    return jsonify({"error": str(error)}), 404


@app.errorhandler(BookingAlreadyCancelled)
@app.errorhandler(BookingNotCancellable)
@app.errorhandler(IdempotencyKeyReused)
def handle_state_conflict(error):
    return jsonify({"error": str(error)}), 409


@app.errorhandler(BookingTimeout)
def handle_timeout(error):
    return jsonify({"error": "booking timed out, please retry", "details": str(error)}), 503


@app.errorhandler(PersistenceFailure)
@app.errorhandler(SQLAlchemyError)
def handle_persistence_failure(error):
    logger.error(f"Persistence failure: {error}")
    return jsonify({"error": "transaction failed"}), 500


def initialize_demo_layout():
    """Create the sample hall layout so local demos have usable data."""
    try:
        if db.seed_demo_layout():
            logger.info("Pre-initialized demo layout")
        else:
            logger.info("Demo layout already exists")
    except SQLAlchemyError as e:
        logger.error(f"Failed to initialize demo layout: {e}")


if SEED_DEMO_DATA:
    initialize_demo_layout()


stop_status_poller = threading.Event()


def background_status_poller():
    """Periodically advance show statuses without blocking the request threads."""
    while not stop_status_poller.is_set():
        try:
            transitions = db.refresh_show_statuses()
            if transitions:
                logger.info(f"Status poller: {len(transitions)} show(s) transitioned")
        except (SQLAlchemyError, BookingTimeout) as e:
            logger.error(f"Status poller error: {e}")
        stop_status_poller.wait(STATUS_POLL_INTERVAL)
    logger.info("Status poller terminated gracefully.")


def stop_background_poller(*args):
    """Signal handler to terminate the poller gracefully."""
    if not stop_status_poller.is_set():
        stop_status_poller.set()
        logger.info("Stopping background status poller...")


if STATUS_POLLER_ENABLED:
    # Dedicated daemon so status updates never block HTTP traffic
    poller_thread = threading.Thread(target=background_status_poller, daemon=True)
    poller_thread.start()

    # Register signal handlers for production (Gunicorn, Docker, etc.)
    signal.signal(signal.SIGTERM, stop_background_poller)
    signal.signal(signal.SIGINT, stop_background_poller)

    # Fallback for local runs (e.g., python app.py)
    atexit.register(stop_background_poller)

# API Endpoints

@app.route("/")
def home_page():
    return jsonify({"service": "kalari-box-office", "status": "running"})


@app.route('/layouts', methods=['POST'])
def create_layout():
    """Create a seating layout from its section/row structure."""
    data, error_response = require_json_object()
    if error_response:
        return error_response

    layout = db.create_layout(data.get('name'), data.get('structure'), created_by=actor(data))
    logger.info(f"Created layout {layout['name']} with {layout['total_seats']} seats")
    return jsonify(layout), 201


@app.route('/layouts', methods=['GET'])
def list_layouts():
    return jsonify(db.list_layouts())


@app.route('/layouts/<layout_id>', methods=['GET'])
def get_layout(layout_id):
    return jsonify(db.get_layout(layout_id))


@app.route('/layouts/<layout_id>/seats', methods=['GET'])
def layout_seats(layout_id):
    return jsonify(db.layout_seats(layout_id))


@app.route('/shows', methods=['POST'])
def create_show():
    """Create a show; date is YYYY-MM-DD and time HH:MM."""
    data, error_response = require_json_object()
    if error_response:
        return error_response

    try:
        show_date = date.fromisoformat(str(data.get('date')))
        show_time = time.fromisoformat(str(data.get('time')))
    except ValueError:
        return bad_request("date must be YYYY-MM-DD and time HH:MM")

    price = data.get('price')
    if isinstance(price, bool) or not isinstance(price, (int, float, str)):
        return bad_request("price must be a number")

    show = db.create_show(
        data.get('title'),
        show_date,
        show_time,
        price,
        layout_id=data.get('layout_id'),
        description=data.get('description'),
        created_by=actor(data),
    )
    return jsonify(show), 201


@app.route('/shows', methods=['GET'])
def list_shows():
    status_raw = request.args.get('status')
    status = None
    if status_raw:
        try:
            status = ShowStatus(status_raw.upper())
        except ValueError:
            return bad_request(f"unknown show status {status_raw}")
    return jsonify(db.list_shows(status))


@app.route('/shows/<show_id>', methods=['GET'])
def get_show(show_id):
    return jsonify(db.get_show(show_id))


@app.route('/shows/<show_id>/seats', methods=['GET'])
def get_seat_status(show_id):
    """Return the live seat summary for a show."""
    return jsonify(db.get_seat_status(show_id))


@app.route('/shows/<show_id>/book', methods=['POST'])
def book_seats(show_id):
    """Atomically book every requested seat, or report which ones are taken."""
    data, error_response = require_json_object()
    if error_response:
        return error_response

    seat_codes_raw = data.get('seat_codes')
    if not isinstance(seat_codes_raw, list):
        return bad_request("seat_codes must be provided as a non-empty JSON array")
    seat_codes = normalize_seat_codes(seat_codes_raw)

    booked_by = data.get('booked_by') or request.headers.get('X-User')
    if not isinstance(booked_by, str) or not booked_by.strip():
        return bad_request("booked_by must be a non-empty string")

    request_id = data.get('request_id') or request.headers.get('X-Idempotency-Key')
    if request_id is not None and not isinstance(request_id, str):
        return bad_request("request_id must be a string")

    result = db.book_seats(
        show_id,
        seat_codes,
        booked_by,
        customer_id=data.get('customer_id'),
        request_id=request_id,
    )

    if result.success:
        logger.info(f"Booking confirmed: {show_id}, booking_id={result.booking_id}")
        return jsonify(result.to_dict()), 200 if result.replayed else 201
    return jsonify(result.to_dict()), 409


@app.route('/shows/<show_id>/report', methods=['GET'])
def show_report(show_id):
    return jsonify(db.get_show_report(show_id))


@app.route('/shows/refresh-status', methods=['POST'])
def refresh_show_statuses():
    """Run one step of the show lifecycle scheduler on demand."""
    transitions = db.refresh_show_statuses()
    return jsonify({"transitions": transitions})


@app.route('/bookings', methods=['GET'])
def list_bookings():
    return jsonify(db.list_bookings(
        show_id=request.args.get('show_id'),
        customer_id=request.args.get('customer_id'),
    ))


@app.route('/bookings/<booking_id>', methods=['GET'])
def get_booking(booking_id):
    return jsonify(db.get_booking(booking_id))


@app.route('/bookings/<booking_id>/cancel', methods=['POST'])
def cancel_booking(booking_id):
    """Cancel a booking, freeing its seats and revoking its tickets."""
    data: Dict[str, Any] = {}
    if request.data:
        data, error_response = require_json_object()
        if error_response:
            return error_response

    reason = data.get('reason')
    if reason is not None and not isinstance(reason, str):
        return bad_request("reason must be a string")

    booking = db.cancel_booking(booking_id, reason=reason, cancelled_by=actor(data, 'cancelled_by'))
    return jsonify(booking), 200


@app.route('/tickets', methods=['GET'])
def list_tickets():
    """Search tickets; ``search`` matches code, seat, show title, booker or booking id."""
    return jsonify(db.find_tickets(
        search=request.args.get('search'),
        status=request.args.get('status'),
    ))


@app.route('/tickets/<ticket_code>', methods=['GET'])
def get_ticket(ticket_code):
    return jsonify(db.get_ticket(ticket_code))


@app.route('/customers', methods=['POST'])
def create_customer():
    data, error_response = require_json_object()
    if error_response:
        return error_response

    customer = db.create_customer(
        data.get('name'),
        email=data.get('email'),
        phone=data.get('phone'),
        address=data.get('address'),
        created_by=actor(data),
    )
    return jsonify(customer), 201


@app.route('/customers', methods=['GET'])
def list_customers():
    return jsonify(db.list_customers(request.args.get('search')))


@app.route('/customers/<customer_id>', methods=['GET'])
def get_customer(customer_id):
    return jsonify(db.get_customer(customer_id))


@app.route('/customers/<customer_id>', methods=['PUT'])
def update_customer(customer_id):
    data, error_response = require_json_object()
    if error_response:
        return error_response

    performed_by = actor(data)
    fields = {key: value for key, value in data.items() if key != 'performed_by'}
    return jsonify(db.update_customer(customer_id, updated_by=performed_by, **fields))


@app.route('/customers/<customer_id>', methods=['DELETE'])
def delete_customer(customer_id):
    db.delete_customer(customer_id, deleted_by=request.headers.get('X-User') or 'system')
    return jsonify({"message": "customer deleted"}), 200


@app.route('/logs', methods=['GET'])
def list_activity():
    limit = request.args.get('limit', '100')
    if not limit.isdigit():
        return bad_request("limit must be a positive integer")
    return jsonify(db.list_activity(limit=min(int(limit), 1000),
                                    entity_type=request.args.get('entity_type')))


@app.route('/health', methods=['GET'])
def health_check():
    """Expose the database connectivity and show count."""
    return jsonify(db.health_check())


if __name__ == '__main__':
    logger.info(f"""
    ================================
    KALARI BOX OFFICE
    ================================
    Database: {DATABASE_URL.split('@')[-1]}
    Concurrency: per-show and per-date locks, SELECT FOR UPDATE on the show row
    Status poller: {'every %ss' % STATUS_POLL_INTERVAL if STATUS_POLLER_ENABLED else 'disabled'}
    ================================
    """)

    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port, debug=False, threaded=True)
