"""
Tee sheet providers.

Every course is served by one provider behind the same interface: course
listing, availability, rates and bookings. ``MockProvider`` runs entirely off
the document store and is what TeeReserve's own courses use; ``ForeUpProvider``
reads live availability from ForeUP-hosted tee sheets.
"""

import hashlib
import logging
import random
import re
import threading
import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

import requests
from bs4 import BeautifulSoup

from .config import DEFAULT_CURRENCY, FOREUP_ENABLED
from .errors import NotFoundError, ProviderError, ValidationError
from .pricing import parse_day, parse_instant, time_to_minutes, to_number
from .store import validate_segment

logger = logging.getLogger(__name__)

USER_AGENTS = [
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15',
]


def get_headers():
    return {
        'User-Agent': random.choice(USER_AGENTS),
        'Accept': 'application/json, text/html;q=0.9, */*;q=0.8',
        'Accept-Language': 'en-US,en;q=0.5',
    }


def to_course(doc):
    """Public course shape shared by every provider."""
    return {
        "id": doc["id"],
        "name": doc.get("name", ""),
        "location": doc.get("location"),
        "description": doc.get("description"),
        "basePrice": doc.get("basePrice"),
        "teeTimeInterval": doc.get("teeTimeInterval"),
        "operatingHours": doc.get("operatingHours"),
        "currency": doc.get("currency") or DEFAULT_CURRENCY,
    }


class TeeSheetProvider(ABC):
    """Abstract base class for tee sheet providers."""

    name = "base"

    def __init__(self, store):
        self.store = store

    def get_courses(self):
        return [to_course(c) for c in self.store.list("courses") if self.serves(c)]

    def get_course(self, course_id):
        validate_segment(course_id, "courseId")
        doc = self.store.get("courses", course_id)
        return to_course(doc) if doc and self.serves(doc) else None

    def serves(self, course_doc):
        return True

    @abstractmethod
    def get_availability(self, course_id, day):
        """Open slots for a course on a YYYY-MM-DD day."""

    @abstractmethod
    def get_rates(self, course_id, day):
        pass

    @abstractmethod
    def create_booking(self, booking_input, idempotency_key=None):
        pass

    @abstractmethod
    def get_booking(self, booking_id):
        pass

    @abstractmethod
    def cancel_booking(self, booking_id):
        pass


# =============================================================================
# MOCK PROVIDER
# =============================================================================
def _slot_interval(course):
    interval = to_number(course.get("teeTimeInterval"))
    if interval is None or int(interval) <= 0:
        if course.get("teeTimeInterval") is not None:
            logger.warning("Course %s has invalid teeTimeInterval %r, using 10 minutes",
                           course.get("id"), course.get("teeTimeInterval"))
        return 10
    return int(interval)


def generate_availability(course, day):
    """
    Slots every ``teeTimeInterval`` minutes from opening, stopping one slot
    short of the last start at or before closing. Early bird (before 09:00)
    is 10% off, twilight (15:00 on) 15% off.
    """
    interval = _slot_interval(course)
    hours = course.get("operatingHours") or {}
    opening = time_to_minutes(hours.get("openingTime") or "07:00")
    closing = time_to_minutes(hours.get("closingTime") or "17:00")
    base_price = course.get("basePrice") or 150
    if opening is None or closing is None:
        return []

    slots = []
    for minute in list(range(opening, closing + 1, interval))[:-1]:
        hour = minute // 60
        price = base_price
        if hour < 9:
            price = round(base_price * 0.9, 2)
        elif hour >= 15:
            price = round(base_price * 0.85, 2)
        slots.append({
            "date": day,
            "teeTime": f"{day}T{hour:02d}:{minute % 60:02d}:00.000Z",
            "playersMin": 1,
            "playersMax": 4,
            "publicPriceUSD": price,
            "currency": DEFAULT_CURRENCY,
        })
    return slots


def generate_rates(course, day):
    base_price = course.get("basePrice") or 150
    return [
        {"id": f"{course['id']}-std-{day}", "name": "Standard", "publicPriceUSD": base_price, "currency": DEFAULT_CURRENCY},
        {"id": f"{course['id']}-early-{day}", "name": "Early Bird", "publicPriceUSD": round(base_price * 0.9, 2), "currency": DEFAULT_CURRENCY},
        {"id": f"{course['id']}-twilight-{day}", "name": "Twilight", "publicPriceUSD": round(base_price * 0.85, 2), "currency": DEFAULT_CURRENCY},
    ]


def booking_economics(price, channel):
    """Revenue split: the course nets 85%; concierge sales give 5% of the 15% to the concierge."""
    concierge = channel == "concierge"
    return {
        "priceNetToCourseUSD": round(price * 0.85, 2),
        "grossMarginUSD": round(price * 0.15, 2),
        "conciergeCommissionUSD": round(price * 0.05, 2) if concierge else 0,
        "platformCommissionUSD": round(price * (0.10 if concierge else 0.15), 2),
    }


def idempotency_doc_id(key):
    return hashlib.sha256(key.encode()).hexdigest()


class MockProvider(TeeSheetProvider):
    name = "mock"

    def __init__(self, store):
        super().__init__(store)
        self._lock = threading.Lock()

    def _course_doc(self, course_id):
        validate_segment(course_id, "courseId")
        return self.store.get("courses", course_id)

    def get_availability(self, course_id, day):
        course = self._course_doc(course_id)
        if not course:
            return []
        return generate_availability(course, day)

    def get_rates(self, course_id, day):
        course = self._course_doc(course_id)
        if not course:
            return []
        return generate_rates(course, day)

    def create_booking(self, booking_input, idempotency_key=None):
        """
        Confirm a booking. Replaying an ``Idempotency-Key`` returns the booking
        created the first time instead of a new one.
        """
        with self._lock:
            if idempotency_key:
                record = self.store.get("idempotencyKeys", idempotency_doc_id(idempotency_key))
                if record:
                    existing = self.store.get("bookings", record["bookingId"])
                    if existing:
                        logger.info("Idempotent replay of booking %s", existing["id"])
                        return existing

            if not self._course_doc(booking_input["courseId"]):
                raise NotFoundError(f"Course {booking_input['courseId']} not found")

            now = datetime.now(timezone.utc)
            booking_id = f"bk_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"
            price = booking_input["pricePublicUSD"]
            booking = {
                "courseId": booking_input["courseId"],
                "teeTime": booking_input["teeTime"],
                "playerCount": booking_input["playerCount"],
                "pricePublicUSD": price,
                "currency": booking_input.get("currency") or DEFAULT_CURRENCY,
                "channel": booking_input.get("channel") or "direct",
                "status": "confirmed",
                "createdAt": now.isoformat(),
                "economics": booking_economics(price, booking_input.get("channel")),
            }
            if booking_input.get("conciergeId"):
                booking["conciergeId"] = booking_input["conciergeId"]

            with self.store.batch() as batch:
                batch.set("bookings", booking_id, booking)
                if idempotency_key:
                    batch.set("idempotencyKeys", idempotency_doc_id(idempotency_key), {
                        "key": idempotency_key,
                        "bookingId": booking_id,
                        "createdAt": now.isoformat(),
                    })

        logger.info("Booking %s confirmed for %s at %s", booking_id, booking["courseId"], booking["teeTime"])
        return {**booking, "id": booking_id}

    def get_booking(self, booking_id):
        validate_segment(booking_id, "bookingId")
        return self.store.get("bookings", booking_id)

    def cancel_booking(self, booking_id):
        booking = self.get_booking(booking_id)
        if not booking:
            return {"status": "not_found"}
        cancelled = self.store.set("bookings", booking_id, {"status": "cancelled"}, merge=True)
        logger.info("Booking %s cancelled", booking_id)
        return {"status": "cancelled", "booking": cancelled}


def purge_expired_idempotency_keys(store, ttl_hours, now=None):
    """Forget idempotency keys older than ``ttl_hours``. Returns how many were dropped."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(hours=ttl_hours)
    expired = []
    for record in store.list("idempotencyKeys"):
        created = parse_instant(record.get("createdAt")) if record.get("createdAt") else None
        if created is None or created < cutoff:
            expired.append(record["id"])

    if expired:
        with store.batch() as batch:
            for doc_id in expired:
                batch.delete("idempotencyKeys", doc_id)
        logger.info("Purged %d expired idempotency keys", len(expired))
    return len(expired)


# =============================================================================
# FOREUP PROVIDER
# =============================================================================
class ForeUpProvider(TeeSheetProvider):
    """
    Live availability from ForeUP booking widgets.

    Courses opt in with ``platform: "foreup"`` plus the widget's
    ``platform_id`` (course id) and ``schedule_id`` (tee sheet id).

    Key API endpoint (the one the booking widget calls):
        GET /index.php/api/booking/times?
            course_id={id}&date={YYYY-MM-DD}&time=all&holes=18&players=4
            &schedule_id={id}&specials_only=0&api_key=no_limits

    Bookings go through ForeUP's own checkout, so this provider is read only.
    """

    name = "foreup"
    BASE_URL = "https://foreupsoftware.com"

    def __init__(self, store, session=None):
        super().__init__(store)
        self.session = session or requests.Session()
        self.session.headers.update({
            **get_headers(),
            "Referer": "https://foreupsoftware.com/",
            "X-Requested-With": "XMLHttpRequest",
        })
        self.api_key = "no_limits"

    def serves(self, course_doc):
        return course_doc.get("platform") == "foreup"

    def _foreup_course(self, course_id):
        validate_segment(course_id, "courseId")
        doc = self.store.get("courses", course_id)
        if not doc or not self.serves(doc):
            return None
        if not doc.get("platform_id") or not doc.get("schedule_id"):
            return None
        return doc

    def get_availability(self, course_id, day, players=4, holes=18):
        course = self._foreup_course(course_id)
        if not course:
            return []

        slots = self._fetch_via_api(course, day, players, holes)
        if slots:
            return slots
        return self._fetch_via_html(course, day, players, holes)

    def _booking_url(self, course, day):
        return f"{self.BASE_URL}/index.php/booking/{course['platform_id']}/{course['schedule_id']}#date={day}"

    def _fetch_via_api(self, course, day, players, holes):
        parsed_day = parse_day(day)
        if parsed_day is None:
            raise ValidationError("date must be YYYY-MM-DD")
        params = {
            "course_id": course["platform_id"],
            "date": parsed_day.isoformat(),
            "time": "all",
            "holes": holes,
            "players": players,
            "booking_class": "",
            "schedule_id": course["schedule_id"],
            "specials_only": 0,
            "api_key": self.api_key,
        }

        try:
            resp = self.session.get(f"{self.BASE_URL}/index.php/api/booking/times", params=params, timeout=10)
            if resp.status_code == 401:
                logger.warning("ForeUP 401 for course_id=%s, session cookie required", course["platform_id"])
                return []
            if resp.status_code != 200:
                return []
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("ForeUP API request failed for %s: %s", course["id"], e)
            return []

        # ForeUP answers `false` (not []) when the sheet is closed or not yet open.
        if data is False or data is None:
            msg = resp.headers.get('x-message', '')
            if msg:
                logger.info("ForeUP course_id=%s sched=%s: %s", course["platform_id"], course["schedule_id"], msg)
            return []
        return self._parse_api_response(data, course, day)

    def _parse_api_response(self, data, course, day):
        rows = data if isinstance(data, list) else data.get("times", data.get("slots", []))
        if not isinstance(rows, list):
            return []

        slots = []
        for row in rows:
            try:
                time_str = str(row.get("time", ""))
                if not time_str:
                    continue
                # "2026-02-24 07:30" or plain "07:30"
                time_str = time_str[-5:]
                green_fee = float(row.get("green_fee", 0) or 0)
                cart_fee = float(row.get("cart_fee", 0) or 0)
                available = int(row.get("available_spots", row.get("available", 4)) or 4)
                slots.append({
                    "date": day,
                    "teeTime": f"{day}T{time_str}:00",
                    "playersMin": 1,
                    "playersMax": available,
                    "publicPriceUSD": green_fee + cart_fee,
                    "currency": DEFAULT_CURRENCY,
                    "rateType": row.get("rate_type", "standard"),
                    "holes": int(row.get("holes", 18) or 18),
                    "bookingUrl": self._booking_url(course, day),
                    "source": "foreup",
                })
            except (ValueError, TypeError, AttributeError):
                continue
        return slots

    def _fetch_via_html(self, course, day, players, holes):
        """Fallback: scrape the booking page HTML for tee times"""
        url = self._booking_url(course, day)
        try:
            resp = self.session.get(url, timeout=10)
        except requests.RequestException as e:
            logger.warning("ForeUP booking page failed for %s: %s", course["id"], e)
            return []
        if resp.status_code != 200:
            return []

        soup = BeautifulSoup(resp.text, 'lxml')
        slots = []
        for el in soup.select('.time-slot, .tee-time, [data-time], .booking-time'):
            time_str = el.get('data-time', '')
            if not time_str:
                time_el = el.select_one('.time')
                time_str = time_el.get_text(strip=True) if time_el else ''
            if not time_str:
                continue

            price = 0
            price_el = el.select_one('.price, .green-fee, [data-price]')
            if price_el:
                price_text = price_el.get('data-price', '') or price_el.get_text(strip=True)
                match = re.search(r'\$?([\d.]+)', str(price_text))
                if match:
                    price = float(match.group(1))

            slots.append({
                "date": day,
                "teeTime": f"{day}T{time_str}:00",
                "playersMin": 1,
                "playersMax": players,
                "publicPriceUSD": price,
                "currency": DEFAULT_CURRENCY,
                "rateType": "standard",
                "holes": holes,
                "bookingUrl": url,
                "source": "foreup_html",
            })
        return slots

    def get_rates(self, course_id, day):
        """Cheapest price per ForeUP rate type for the day."""
        cheapest = {}
        for slot in self.get_availability(course_id, day):
            rate_type = slot.get("rateType", "standard")
            if rate_type not in cheapest or slot["publicPriceUSD"] < cheapest[rate_type]:
                cheapest[rate_type] = slot["publicPriceUSD"]
        return [
            {"id": f"{course_id}-{rate_type}-{day}", "name": rate_type.replace("_", " ").title(),
             "publicPriceUSD": price, "currency": DEFAULT_CURRENCY}
            for rate_type, price in sorted(cheapest.items())
        ]

    def create_booking(self, booking_input, idempotency_key=None):
        raise ProviderError("ForeUP bookings are completed on the course's ForeUP page")

    def get_booking(self, booking_id):
        raise ProviderError("ForeUP bookings are not tracked by TeeReserve")

    def cancel_booking(self, booking_id):
        raise ProviderError("ForeUP bookings are not tracked by TeeReserve")


# =============================================================================
# PROVIDER ROUTER
# =============================================================================
def get_provider(name, store):
    name = (name or "mock").lower()
    if name == "foreup":
        if not FOREUP_ENABLED:
            raise ProviderError("ForeUP integration is disabled")
        return ForeUpProvider(store)
    if name != "mock":
        logger.warning("Unknown tee sheet provider %r, falling back to mock", name)
    return MockProvider(store)
