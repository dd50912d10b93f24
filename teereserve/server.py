"""
TEERESERVE - Green fee pricing and tee sheet API
Built for TeeReserve Golf (Los Cabos / Baja California Sur)

Serves:
- "Starting from" prices for course cards
- Tee time quotes for checkout
- Admin pricing editor persistence (seasons, time bands, rules, overrides)
- Tee sheet availability and bookings via the configured provider

Architecture: Flask app over a JSON document store, APScheduler for
housekeeping jobs.
"""

import logging
from datetime import date

from apscheduler.schedulers.background import BackgroundScheduler
from flask import Flask, jsonify, request, session
from flask_cors import CORS
from pydantic import ValidationError as SchemaError
from werkzeug.exceptions import HTTPException
from werkzeug.security import check_password_hash

from . import config
from .errors import NotFoundError, PriceNotFound, TeeReserveError, ValidationError
from .pricing import parse_day
from .providers import get_provider, purge_expired_idempotency_keys
from .quotes import build_quote, verify_quote
from .rule_store import (
    dedupe_pricing,
    get_min_price,
    get_public_pricing,
    load_pricing_data,
    quote_tee_time,
    resolve_base_price,
    save_pricing_data,
)
from .schemas import BookingRequest, DedupeRequest, QuoteRequest, SavePricingRequest
from .store import DocumentStore, seed_courses, validate_segment

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

store = DocumentStore(config.DATA_DIR)
provider = get_provider(config.TEE_PROVIDER, store)


# =============================================================================
# FLASK APP
# =============================================================================
app = Flask(__name__)
app.secret_key = config.SECRET_KEY
if app.secret_key == "change-me-set-SECRET_KEY-env-var":
    logger.warning("Using default SECRET_KEY, set SECRET_KEY env var in production")
CORS(app)


def check_admin_auth():
    if not config.ADMIN_PASSWORD_HASH:
        return False
    if session.get('admin_authenticated'):
        return True
    auth_header = request.headers.get('X-Admin-Password')
    if auth_header and check_password_hash(config.ADMIN_PASSWORD_HASH, auth_header):
        return True
    return False


def unauthorized():
    return jsonify({"ok": False, "error": "Unauthorized. Admin access required."}), 401


def json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def ok(data, status=200, **extra):
    return jsonify({"ok": True, "data": data, **extra}), status


# --- ERRORS ---
@app.errorhandler(TeeReserveError)
def handle_domain_error(e):
    return jsonify({"ok": False, "error": e.message}), e.status_code


@app.errorhandler(SchemaError)
def handle_schema_error(e):
    details = e.errors(include_url=False, include_context=False, include_input=False)
    return jsonify({"ok": False, "error": "Invalid data format", "details": details}), 400


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    if isinstance(e, HTTPException):
        return jsonify({"ok": False, "error": e.description}), e.code
    logger.exception("Unhandled error on %s %s", request.method, request.path)
    return jsonify({"ok": False, "error": "Internal server error"}), 500


# --- PRICING ---
@app.route('/api/pricing/min-price')
def min_price():
    """Cheapest currently bookable price for a course ("Desde $X")."""
    return ok(get_min_price(store, request.args.get("courseId")))


@app.route('/api/public/pricing/load')
def public_pricing():
    course_id = request.args.get("courseId")
    if not course_id:
        raise ValidationError("Missing courseId")
    return ok(get_public_pricing(store, course_id))


@app.route('/api/checkout/quote', methods=['POST'])
def checkout_quote():
    quote_request = QuoteRequest.model_validate(json_body())
    return ok(build_quote(store, quote_request))


@app.route('/api/checkout/verify-quote', methods=['POST'])
def checkout_verify_quote():
    verify_quote(json_body())
    return ok({"valid": True})


# --- ADMIN PRICING ---
@app.route('/api/admin/pricing/load')
def admin_pricing_load():
    if not check_admin_auth():
        return unauthorized()
    course_id = request.args.get("courseId")
    if not course_id:
        raise ValidationError("Missing courseId")
    validate_segment(course_id, "courseId")
    return ok({"courseId": course_id, **load_pricing_data(store, course_id)})


@app.route('/api/admin/pricing/save', methods=['POST'])
def admin_pricing_save():
    if not check_admin_auth():
        return unauthorized()
    payload = SavePricingRequest.model_validate(json_body())
    result = save_pricing_data(store, payload)
    return ok(result, message="Pricing data saved successfully")


@app.route('/api/admin/pricing/dedupe', methods=['POST'])
def admin_pricing_dedupe():
    if not check_admin_auth():
        return unauthorized()
    dedupe_request = DedupeRequest.model_validate(json_body())
    removed = dedupe_pricing(store, dedupe_request.courseId, dedupe_request.type, dedupe_request.strategy)
    return ok({"removedCount": removed}, message=f"Removed {removed} duplicate items")


# --- TEE SHEET ---
def requested_day():
    day = request.args.get("date") or date.today().isoformat()
    if parse_day(day) is None:
        raise ValidationError("date must be YYYY-MM-DD")
    return day[:10]


def require_course(course_id):
    course = provider.get_course(course_id)
    if course is None:
        raise NotFoundError(f"Course {course_id} not found")
    return course


@app.route('/api/v1/courses')
def list_courses():
    courses = provider.get_courses()
    return ok(courses, meta={"count": len(courses)})


@app.route('/api/v1/courses/<course_id>')
def get_course(course_id):
    return ok(require_course(course_id))


@app.route('/api/v1/courses/<course_id>/availability')
def course_availability(course_id):
    require_course(course_id)
    day = requested_day()
    return ok(provider.get_availability(course_id, day), meta={"date": day})


@app.route('/api/v1/courses/<course_id>/rates')
def course_rates(course_id):
    require_course(course_id)
    day = requested_day()
    return ok(provider.get_rates(course_id, day), meta={"date": day})


def booking_price(booking_request):
    """Public price of a booking when the client did not send one."""
    try:
        result = quote_tee_time(store, booking_request.courseId, booking_request.date,
                                booking_request.time, booking_request.playerCount)
        return result["totalPrice"]
    except PriceNotFound:
        base_price = resolve_base_price(store, booking_request.courseId)
        if base_price is None:
            raise
        return base_price * booking_request.playerCount


@app.route('/api/v1/bookings', methods=['POST'])
def create_booking():
    idempotency_key = request.headers.get('Idempotency-Key') or None
    booking_request = BookingRequest.model_validate(json_body())
    booking_input = booking_request.model_dump()
    if booking_input["pricePublicUSD"] is None:
        booking_input["pricePublicUSD"] = booking_price(booking_request)
    booking = provider.create_booking(booking_input, idempotency_key)
    return ok(booking, meta={"idempotencyKey": idempotency_key})


@app.route('/api/v1/bookings/<booking_id>')
def get_booking(booking_id):
    booking = provider.get_booking(booking_id)
    if booking is None:
        raise NotFoundError("Booking not found")
    return ok(booking)


@app.route('/api/v1/bookings/<booking_id>/cancel', methods=['POST'])
def cancel_booking(booking_id):
    result = provider.cancel_booking(booking_id)
    if result["status"] == "not_found":
        raise NotFoundError("Booking not found")
    return ok(result["booking"])


# --- STATUS / AUTH ---
@app.route('/api/status')
def status():
    return jsonify({
        "status": "ok",
        "provider": provider.name,
        "totalCourses": store.count("courses"),
        "foreupEnabled": config.FOREUP_ENABLED,
        "schedulerEnabled": config.SCHEDULER_ENABLED,
        "purgeIntervalMinutes": config.PURGE_INTERVAL_MINUTES,
    })


@app.route('/admin/login', methods=['POST'])
def admin_login():
    if not config.ADMIN_PASSWORD_HASH:
        return jsonify({"success": False, "error": "Admin not configured"}), 503
    data = request.get_json(silent=True) or {}
    password = data.get('password', '')
    if password and check_password_hash(config.ADMIN_PASSWORD_HASH, password):
        session['admin_authenticated'] = True
        return jsonify({"success": True})
    return jsonify({"success": False, "error": "Invalid password"}), 401


# =============================================================================
# SCHEDULER
# =============================================================================
scheduler = BackgroundScheduler()


def purge_idempotency_keys():
    purge_expired_idempotency_keys(store, config.IDEMPOTENCY_TTL_HOURS)


def start_scheduler():
    scheduler.add_job(purge_idempotency_keys, 'interval', minutes=config.PURGE_INTERVAL_MINUTES,
                      id='idempotency_purge', replace_existing=True)
    scheduler.start()


seed_courses(store)
if config.SCHEDULER_ENABLED:
    start_scheduler()

logger.info("TeeReserve starting on port %s", config.PORT)
logger.info("Data directory: %s", config.DATA_DIR)
logger.info("Tee sheet provider: %s", provider.name)
logger.info("Idempotency purge: %s", f"every {config.PURGE_INTERVAL_MINUTES} minutes" if config.SCHEDULER_ENABLED else "disabled")

if __name__ == '__main__':
    app.run(host='0.0.0.0', port=config.PORT, debug=False)
