"""HTTP surface: envelopes, status codes and admin auth."""


class TestMinPriceEndpoint:
    def test_missing_course_id(self, client):
        resp = client.get("/api/pricing/min-price")
        assert resp.status_code == 400
        assert resp.get_json() == {"ok": False, "error": "Missing courseId"}

    def test_unknown_course(self, client):
        resp = client.get("/api/pricing/min-price?courseId=nowhere-golf")
        assert resp.status_code == 404
        assert resp.get_json()["ok"] is False

    def test_solmar(self, client, solmar_pricing):
        resp = client.get("/api/pricing/min-price?courseId=solmar-golf-links")
        assert resp.status_code == 200
        assert resp.get_json() == {
            "ok": True,
            "data": {"courseId": "solmar-golf-links", "currency": "USD", "minPrice": 305},
        }


class TestCheckout:
    def test_quote_and_verify(self, client, solmar_pricing):
        resp = client.post("/api/checkout/quote", json={
            "courseId": "solmar-golf-links", "date": "2026-03-10", "time": "14:00", "players": 2, "holes": 18,
        })
        assert resp.status_code == 200
        quote = resp.get_json()["data"]
        assert quote["subtotal_cents"] == 61000

        verify = client.post("/api/checkout/verify-quote", json=quote)
        assert verify.status_code == 200
        assert verify.get_json()["data"] == {"valid": True}

        quote["total_cents"] = 1
        assert client.post("/api/checkout/verify-quote", json=quote).status_code == 400

    def test_quote_schema_error(self, client):
        resp = client.post("/api/checkout/quote", json={"courseId": "solmar-golf-links", "time": "25:99"})
        assert resp.status_code == 400
        body = resp.get_json()
        assert body["error"] == "Invalid data format"
        assert body["details"]

    def test_non_json_body(self, client):
        resp = client.post("/api/checkout/quote", data="hello", content_type="text/plain")
        assert resp.status_code == 400


class TestAdminPricing:
    payload = {
        "courseId": "solmar-golf-links",
        "baseProduct": {"courseId": "solmar-golf-links", "name": "Green fee", "basePrice": 320, "active": True},
        "priceRules": [
            {"id": "twilight", "courseId": "solmar-golf-links", "name": "Twilight", "priceType": "delta",
             "priceValue": -40, "priority": 1, "active": True},
        ],
    }

    def test_requires_auth(self, client):
        assert client.get("/api/admin/pricing/load?courseId=solmar-golf-links").status_code == 401
        assert client.post("/api/admin/pricing/save", json=self.payload).status_code == 401
        assert client.post("/api/admin/pricing/dedupe", json={"courseId": "x"}).status_code == 401

    def test_wrong_password(self, client):
        resp = client.get("/api/admin/pricing/load?courseId=solmar-golf-links",
                          headers={"X-Admin-Password": "nope"})
        assert resp.status_code == 401

    def test_save_then_load(self, client, admin_headers):
        resp = client.post("/api/admin/pricing/save", json=self.payload, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["data"]["savedItems"]["priceRules"] == 1

        loaded = client.get("/api/admin/pricing/load?courseId=solmar-golf-links", headers=admin_headers)
        data = loaded.get_json()["data"]
        assert data["baseProduct"]["basePrice"] == 320
        assert [r["id"] for r in data["priceRules"]] == ["twilight"]

        min_price = client.get("/api/pricing/min-price?courseId=solmar-golf-links").get_json()
        assert min_price["data"]["minPrice"] == 280

        public = client.get("/api/public/pricing/load?courseId=solmar-golf-links").get_json()
        assert public["data"]["basePrice"] == 320

    def test_session_login(self, client):
        assert client.post("/admin/login", json={"password": "wrong"}).status_code == 401
        assert client.post("/admin/login", json={"password": "test-admin-pass"}).status_code == 200
        assert client.post("/api/admin/pricing/dedupe", json={"courseId": "solmar-golf-links"}).status_code == 200

    def test_dedupe(self, client, admin_headers, solmar_pricing):
        resp = client.post("/api/admin/pricing/dedupe", json={"courseId": "solmar-golf-links", "type": "timeBands"},
                           headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["data"] == {"removedCount": 0}


class TestTeeSheet:
    def test_courses(self, client):
        body = client.get("/api/v1/courses").get_json()
        assert body["meta"]["count"] == len(body["data"])
        assert "solmar-golf-links" in [c["id"] for c in body["data"]]

    def test_unknown_course(self, client):
        assert client.get("/api/v1/courses/nowhere").status_code == 404

    def test_availability(self, client):
        resp = client.get("/api/v1/courses/solmar-golf-links/availability?date=2026-03-10")
        body = resp.get_json()
        assert resp.status_code == 200
        assert body["meta"] == {"date": "2026-03-10"}
        assert body["data"][0]["teeTime"] == "2026-03-10T07:00:00.000Z"

    def test_availability_bad_date(self, client):
        assert client.get("/api/v1/courses/solmar-golf-links/availability?date=soon").status_code == 400

    def test_rates(self, client):
        body = client.get("/api/v1/courses/solmar-golf-links/rates?date=2026-03-10").get_json()
        assert len(body["data"]) == 3


class TestBookings:
    def test_create_prices_from_rules(self, client, solmar_pricing):
        resp = client.post("/api/v1/bookings", json={
            "courseId": "solmar-golf-links", "teeTime": "2026-03-10T08:00:00", "playerCount": 2,
        })
        assert resp.status_code == 200
        booking = resp.get_json()["data"]
        assert booking["pricePublicUSD"] == 798
        assert booking["status"] == "confirmed"

    def test_create_falls_back_to_course_price(self, client):
        resp = client.post("/api/v1/bookings", json={
            "courseId": "puerto-los-cabos", "date": "2026-03-10", "time": "08:00", "playerCount": 3,
        })
        assert resp.get_json()["data"]["pricePublicUSD"] == 540

    def test_idempotency_header(self, client):
        body = {"courseId": "puerto-los-cabos", "teeTime": "2026-03-10T08:00:00", "pricePublicUSD": 180}
        headers = {"Idempotency-Key": "key-1"}
        first = client.post("/api/v1/bookings", json=body, headers=headers).get_json()
        second = client.post("/api/v1/bookings", json=body, headers=headers).get_json()
        assert first["data"]["id"] == second["data"]["id"]
        assert second["meta"] == {"idempotencyKey": "key-1"}

    def test_get_and_cancel(self, client):
        created = client.post("/api/v1/bookings", json={
            "courseId": "puerto-los-cabos", "teeTime": "2026-03-10T08:00:00", "pricePublicUSD": 180,
        }).get_json()["data"]

        fetched = client.get(f"/api/v1/bookings/{created['id']}").get_json()
        assert fetched["data"]["id"] == created["id"]

        cancelled = client.post(f"/api/v1/bookings/{created['id']}/cancel").get_json()
        assert cancelled["data"]["status"] == "cancelled"

    def test_missing_booking(self, client):
        assert client.get("/api/v1/bookings/bk_missing").status_code == 404
        assert client.post("/api/v1/bookings/bk_missing/cancel").status_code == 404

    def test_too_many_players(self, client):
        resp = client.post("/api/v1/bookings", json={
            "courseId": "puerto-los-cabos", "teeTime": "2026-03-10T08:00:00", "playerCount": 5,
        })
        assert resp.status_code == 400


def test_status(client):
    body = client.get("/api/status").get_json()
    assert body["status"] == "ok"
    assert body["provider"] == "mock"
    assert body["totalCourses"] == 12
