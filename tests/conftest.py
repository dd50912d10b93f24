import os
import tempfile

# Read once by teereserve.config at import time
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["ADMIN_PASSWORD"] = "test-admin-pass"
os.environ["TEE_PROVIDER"] = "mock"
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="teereserve-test-"))

import pytest

from teereserve.providers import MockProvider
from teereserve.rule_store import pricing_path
from teereserve.store import DocumentStore, seed_courses

ADMIN_PASSWORD = "test-admin-pass"


@pytest.fixture
def store(tmp_path):
    return DocumentStore(str(tmp_path / "data"))


@pytest.fixture
def seeded_store(store):
    seed_courses(store)
    return store


@pytest.fixture
def solmar_pricing(seeded_store):
    """Solmar Golf Links: base 305 with morning/midday/afternoon fixed rules."""
    course_id = "solmar-golf-links"
    with seeded_store.batch() as batch:
        batch.set(pricing_path(course_id, "baseProducts"), "default",
                  {"courseId": course_id, "basePrice": 305, "currency": "USD"})
        bands = [
            ("morning", "Morning", "07:00", "11:50"),
            ("midday", "Midday", "12:00", "13:20"),
            ("afternoon", "Afternoon", "13:30", "18:00"),
        ]
        for band_id, label, start, end in bands:
            batch.set(pricing_path(course_id, "timeBands"), band_id, {
                "courseId": course_id, "label": label, "startTime": start, "endTime": end, "active": True,
            })
        rules = [
            ("r-morning", "Morning", "morning", "fixed", 399, {}),
            ("r-midday", "Midday", "midday", "fixed", 360, {}),
            ("r-afternoon", "Afternoon", "afternoon", "fixed", 305, {}),
            ("r-floor", "Morning floor", "morning", "delta", 0, {"minPrice": 399}),
        ]
        for rule_id, name, band_id, price_type, value, extra in rules:
            batch.set(pricing_path(course_id, "priceRules"), rule_id, {
                "courseId": course_id, "name": name, "timeBandId": band_id,
                "priceType": price_type, "priceValue": value, "priority": 1, "active": True, **extra,
            })
    return seeded_store


@pytest.fixture
def server(monkeypatch, seeded_store):
    from teereserve import server as server_module

    monkeypatch.setattr(server_module, "store", seeded_store)
    monkeypatch.setattr(server_module, "provider", MockProvider(seeded_store))
    server_module.app.config["TESTING"] = True
    return server_module


@pytest.fixture
def client(server):
    return server.app.test_client()


@pytest.fixture
def admin_headers():
    return {"X-Admin-Password": ADMIN_PASSWORD}
