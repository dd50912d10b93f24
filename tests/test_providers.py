from datetime import datetime, timedelta, timezone

import pytest
import requests

from teereserve.errors import NotFoundError, ProviderError
from teereserve.providers import (
    ForeUpProvider,
    MockProvider,
    booking_economics,
    generate_availability,
    get_provider,
    idempotency_doc_id,
    purge_expired_idempotency_keys,
)


def booking_input(**overrides):
    data = {
        "courseId": "solmar-golf-links",
        "teeTime": "2026-03-10T08:00:00",
        "playerCount": 2,
        "pricePublicUSD": 610,
        "currency": "USD",
        "channel": "direct",
        "conciergeId": None,
    }
    data.update(overrides)
    return data


class TestMockAvailability:
    def test_slots_and_discounts(self):
        course = {"id": "c1", "basePrice": 200, "teeTimeInterval": 60,
                  "operatingHours": {"openingTime": "07:00", "closingTime": "17:00"}}
        slots = generate_availability(course, "2026-03-10")
        assert [s["teeTime"][11:16] for s in slots] == [f"{h:02d}:00" for h in range(7, 17)]
        assert slots[0]["teeTime"] == "2026-03-10T07:00:00.000Z"
        prices = {s["teeTime"][11:16]: s["publicPriceUSD"] for s in slots}
        assert prices["08:00"] == 180
        assert prices["09:00"] == 200
        assert prices["15:00"] == 170

    def test_last_slot_before_uneven_closing_is_dropped(self):
        course = {"id": "c1", "basePrice": 200, "teeTimeInterval": 10,
                  "operatingHours": {"openingTime": "07:00", "closingTime": "17:05"}}
        slots = generate_availability(course, "2026-03-10")
        assert slots[-1]["teeTime"] == "2026-03-10T16:50:00.000Z"
        assert len(slots) == 60

    @pytest.mark.parametrize("interval", ["15", 15.0])
    def test_numeric_interval_strings_are_read(self, interval):
        course = {"id": "c1", "teeTimeInterval": interval,
                  "operatingHours": {"openingTime": "07:00", "closingTime": "08:00"}}
        assert [s["teeTime"][11:16] for s in generate_availability(course, "2026-03-10")] == [
            "07:00", "07:15", "07:30", "07:45",
        ]

    @pytest.mark.parametrize("interval", ["often", -10, 0])
    def test_invalid_interval_falls_back_to_ten_minutes(self, interval, caplog):
        course = {"id": "c1", "teeTimeInterval": interval,
                  "operatingHours": {"openingTime": "07:00", "closingTime": "08:00"}}
        slots = generate_availability(course, "2026-03-10")
        assert len(slots) == 6
        assert "invalid teeTimeInterval" in caplog.text

    def test_unknown_course_has_no_slots(self, seeded_store):
        assert MockProvider(seeded_store).get_availability("nowhere", "2026-03-10") == []

    def test_rates(self, seeded_store):
        rates = MockProvider(seeded_store).get_rates("solmar-golf-links", "2026-03-10")
        assert [r["name"] for r in rates] == ["Standard", "Early Bird", "Twilight"]
        assert rates[0]["publicPriceUSD"] == 305


class TestMockBookings:
    def test_create_and_get(self, seeded_store):
        provider = MockProvider(seeded_store)
        booking = provider.create_booking(booking_input())
        assert booking["id"].startswith("bk_")
        assert booking["status"] == "confirmed"
        assert provider.get_booking(booking["id"])["teeTime"] == "2026-03-10T08:00:00"

    def test_idempotent_replay(self, seeded_store):
        provider = MockProvider(seeded_store)
        first = provider.create_booking(booking_input(), idempotency_key="abc-123")
        second = provider.create_booking(booking_input(playerCount=4), idempotency_key="abc-123")
        assert second["id"] == first["id"]
        assert second["playerCount"] == 2
        assert seeded_store.count("bookings") == 1
        assert seeded_store.get("idempotencyKeys", idempotency_doc_id("abc-123"))["bookingId"] == first["id"]

    def test_unknown_course(self, seeded_store):
        with pytest.raises(NotFoundError):
            MockProvider(seeded_store).create_booking(booking_input(courseId="nowhere"))

    def test_cancel(self, seeded_store):
        provider = MockProvider(seeded_store)
        booking = provider.create_booking(booking_input())
        result = provider.cancel_booking(booking["id"])
        assert result["status"] == "cancelled"
        assert result["booking"]["status"] == "cancelled"
        assert provider.cancel_booking("bk_missing")["status"] == "not_found"

    def test_concierge_economics(self):
        economics = booking_economics(100, "concierge")
        assert economics == {
            "priceNetToCourseUSD": 85,
            "grossMarginUSD": 15,
            "conciergeCommissionUSD": 5,
            "platformCommissionUSD": 10,
        }
        assert booking_economics(100, "direct")["conciergeCommissionUSD"] == 0


def test_purge_expired_idempotency_keys(store):
    now = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
    store.set("idempotencyKeys", "old", {"bookingId": "b1", "createdAt": (now - timedelta(hours=25)).isoformat()})
    store.set("idempotencyKeys", "new", {"bookingId": "b2", "createdAt": (now - timedelta(hours=1)).isoformat()})
    assert purge_expired_idempotency_keys(store, 24, now) == 1
    assert [r["id"] for r in store.list("idempotencyKeys")] == ["new"]


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text="", headers=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.headers = headers or {}

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    def __init__(self, responses):
        self.headers = {}
        self.responses = list(responses)
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def foreup_store(store):
    store.set("courses", "cabo-foreup", {
        "name": "Cabo ForeUP", "basePrice": 150, "platform": "foreup",
        "platform_id": "1234", "schedule_id": "5678",
    })
    store.set("courses", "mock-course", {"name": "Mock", "basePrice": 100, "platform": "mock"})
    return store


class TestForeUpProvider:
    def test_serves_only_foreup_courses(self, foreup_store):
        provider = ForeUpProvider(foreup_store, session=FakeSession([]))
        assert [c["id"] for c in provider.get_courses()] == ["cabo-foreup"]
        assert provider.get_course("mock-course") is None

    def test_api_times_parsed(self, foreup_store):
        session = FakeSession([FakeResponse(payload=[
            {"time": "2026-03-10 07:30", "green_fee": "95.00", "cart_fee": "25", "available_spots": 3,
             "rate_type": "resident", "holes": 18},
            {"time": "2026-03-10 08:00", "green_fee": 110, "available_spots": 4},
        ])])
        slots = ForeUpProvider(foreup_store, session=session).get_availability("cabo-foreup", "2026-03-10")
        assert [s["teeTime"] for s in slots] == ["2026-03-10T07:30:00", "2026-03-10T08:00:00"]
        assert slots[0]["publicPriceUSD"] == 120
        assert slots[0]["playersMax"] == 3
        assert slots[0]["rateType"] == "resident"
        assert slots[1]["rateType"] == "standard"
        url, params = session.calls[0]
        assert url.endswith("/index.php/api/booking/times")
        assert params["course_id"] == "1234"
        assert params["schedule_id"] == "5678"
        assert params["date"] == "2026-03-10"

    def test_falls_back_to_html(self, foreup_store):
        html = """
        <div class="time-slot" data-time="09:10"><span class="price">$88.50</span></div>
        <div class="tee-time"><span class="time">09:20</span><span class="green-fee">$90</span></div>
        """
        session = FakeSession([FakeResponse(payload=False), FakeResponse(text=html)])
        slots = ForeUpProvider(foreup_store, session=session).get_availability("cabo-foreup", "2026-03-10")
        assert [(s["teeTime"], s["publicPriceUSD"]) for s in slots] == [
            ("2026-03-10T09:10:00", 88.5),
            ("2026-03-10T09:20:00", 90),
        ]
        assert all(s["source"] == "foreup_html" for s in slots)

    def test_network_failure_returns_empty(self, foreup_store):
        session = FakeSession([requests.ConnectionError("down"), requests.ConnectionError("down")])
        assert ForeUpProvider(foreup_store, session=session).get_availability("cabo-foreup", "2026-03-10") == []

    def test_rates_are_cheapest_per_type(self, foreup_store):
        session = FakeSession([FakeResponse(payload=[
            {"time": "07:30", "green_fee": 120, "rate_type": "standard"},
            {"time": "08:00", "green_fee": 100, "rate_type": "standard"},
            {"time": "15:00", "green_fee": 80, "rate_type": "twilight"},
        ])])
        rates = ForeUpProvider(foreup_store, session=session).get_rates("cabo-foreup", "2026-03-10")
        assert [(r["name"], r["publicPriceUSD"]) for r in rates] == [("Standard", 100), ("Twilight", 80)]

    def test_bookings_not_supported(self, foreup_store):
        with pytest.raises(ProviderError):
            ForeUpProvider(foreup_store, session=FakeSession([])).create_booking(booking_input())


class TestGetProvider:
    def test_unknown_falls_back_to_mock(self, store):
        assert isinstance(get_provider("teesnap", store), MockProvider)

    def test_foreup_disabled(self, store, monkeypatch):
        monkeypatch.setattr("teereserve.providers.FOREUP_ENABLED", False)
        with pytest.raises(ProviderError):
            get_provider("foreup", store)
