import pytest
import requests
from fastapi.testclient import TestClient

import templating
from conftest import FakeResponse, publish_routes

HEADER = "Reference,Permit_Number,Agent_Name,Property_Type,Location_Name,Title_EN,Description_EN,Bathrooms,Property_Size"
LISTING = {"reference": "R-001", "permit_number": "P-1", "title": "2BR Flat", "price": "500000",
           "location_id": 42, "property_type": "AP", "bedrooms": "2", "agent_name": "Sara Khan"}


@pytest.fixture
def api(pf_client):
    from app import app, get_client

    app.dependency_overrides[get_client] = lambda: pf_client
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


def test_health(api) -> None:
    assert api.get("/health").json() == {"status": "ok"}


class TestListings:
    def test_crud(self, api) -> None:
        created = api.post("/api/listings", json=LISTING)
        assert created.status_code == 200
        listing = created.json()["listing"]
        assert listing["status"] == "draft"

        assert api.get(f"/api/listings/{listing['id']}").json()["reference"] == "R-001"
        assert [l["id"] for l in api.get("/api/listings", params={"status": "draft"}).json()] == [listing["id"]]
        assert api.get("/api/listings", params={"status": "live"}).json() == []

        assert api.delete(f"/api/listings/{listing['id']}").json()["success"] is True
        missing = api.get(f"/api/listings/{listing['id']}")
        assert missing.status_code == 404
        assert missing.json()["success"] is False

    def test_duplicate_is_conflict(self, api) -> None:
        api.post("/api/listings", json=LISTING)
        resp = api.post("/api/listings", json=LISTING)
        assert resp.status_code == 409
        assert "R-001" in resp.json()["message"]

    def test_missing_fields(self, api) -> None:
        resp = api.post("/api/listings", json={"reference": "R-2"})
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "message": "Missing required fields: permit_number, title, price"}

    def test_bulk_listing(self, api) -> None:
        resp = api.post("/api/bulk-listing", json={
            "account_id": "galahome",
            "listings": [LISTING, {**LISTING, "reference": "R-002"}, LISTING],
        })
        body = resp.json()
        assert body["created"] == 2
        assert body["failed"] == 1
        assert body["failures"][0]["row"] == 3
        assert body["listings"][0]["extra_data"]["account_id"] == "galahome"

    def test_bulk_listing_unknown_account(self, api) -> None:
        resp = api.post("/api/bulk-listing", json={"account_id": "nobody", "listings": [LISTING]})
        assert resp.status_code == 400

    def test_csv_upload(self, api) -> None:
        content = "\n".join([
            HEADER,
            "GH-1,P-1,Sara,AP,Marina,Flat one,Desc,2,900",
            "GH-2,P-2,Sara,AP,Marina,Flat two,Desc,2,950",
        ])
        resp = api.post("/api/bulk-listing/csv", files={"file": ("listings.csv", content, "text/csv")})
        body = resp.json()
        assert body["processed"] == 2
        assert len(body["created"]) == 2

    def test_csv_missing_column(self, api) -> None:
        resp = api.post("/api/bulk-listing/csv", files={"file": ("l.csv", "Reference\nGH-1\n", "text/csv")})
        assert resp.status_code == 400
        assert api.get("/api/listings").json() == []


class TestPublish:
    def test_publish_then_republish(self, api, fake_session, galahome_credential) -> None:
        fake_session.routes.update(publish_routes())
        listing_id = api.post("/api/listings", json=LISTING).json()["listing"]["id"]

        resp = api.post("/api/listings/publish", json={"listing_id": listing_id})
        body = resp.json()
        assert body["success"] is True
        assert body["listing"]["status"] == "live"
        assert body["listing"]["pf_listing_url"]

        again = api.post("/api/listings/publish", json={"listing_id": listing_id})
        assert again.status_code == 409

        forced = api.post("/api/listings/publish", json={"listing_id": listing_id, "force": True})
        assert forced.json()["success"] is True

    def test_publish_failure_reported(self, api, fake_session, galahome_credential) -> None:
        fake_session.routes[("POST", "/v1/listings")] = FakeResponse(422, text="bad payload")
        listing_id = api.post("/api/listings", json=LISTING).json()["listing"]["id"]
        body = api.post("/api/listings/publish", json={"listing_id": listing_id}).json()
        assert body["success"] is False
        assert body["listing"]["status"] == "failed"
        assert body["listing"]["pf_listing_url"] is None
        assert "bad payload" in body["message"]

    def test_unreadable_upstream_reply_is_not_a_server_error(self, api, fake_session, galahome_credential) -> None:
        fake_session.routes[("POST", "/v1/listings")] = FakeResponse(200, text="<html>oops</html>")
        listing_id = api.post("/api/listings", json=LISTING).json()["listing"]["id"]
        resp = api.post("/api/listings/publish", json={"listing_id": listing_id})
        assert resp.status_code == 200
        assert resp.json()["listing"]["status"] == "failed"

    def test_unreadable_permit_reply_is_bad_gateway(self, api, fake_session, galahome_credential) -> None:
        fake_session.routes[("GET", "/v1/compliances/711/CN-1100636")] = FakeResponse(200, text="<html/>")
        resp = api.post("/api/pf/permit", json={"permit_number": "711"})
        assert resp.status_code == 502
        assert resp.json()["success"] is False

    def test_publish_without_credentials(self, api) -> None:
        listing_id = api.post("/api/listings", json=LISTING).json()["listing"]["id"]
        resp = api.post("/api/listings/publish", json={"listing_id": listing_id, "account_id": "vamrealty"})
        assert resp.status_code == 400

    def test_publish_unknown_listing(self, api, galahome_credential) -> None:
        assert api.post("/api/listings/publish", json={"listing_id": "nope"}).status_code == 404


class TestProxy:
    def test_short_location_query(self, api, fake_session) -> None:
        resp = api.post("/api/pf/locations", json={"query": "D"})
        assert resp.json() == {"success": True, "locations": []}
        assert fake_session.calls == []

    def test_locations(self, api, fake_session, galahome_credential) -> None:
        fake_session.routes[("GET", "/v1/locations")] = FakeResponse(200, {"data": [
            {"id": 5, "name": "Business Bay", "tree": [{"name": "Dubai"}, {"name": "Business Bay"}]},
        ]})
        locations = api.post("/api/pf/locations", json={"query": "Bus"}).json()["locations"]
        assert locations == [{"id": 5, "name": "Business Bay", "full_name": "Business Bay"}]

    def test_transport_error(self, api, fake_session, galahome_credential) -> None:
        fake_session.routes[("GET", "/v1/locations")] = requests.ConnectionError("down")
        assert api.post("/api/pf/locations", json={"query": "Bus"}).status_code == 504

    def test_permit(self, api, fake_session, galahome_credential) -> None:
        fake_session.routes[("GET", "/v1/compliances/711/CN-1100636")] = FakeResponse(200, {"data": [
            {"permitNumber": "711", "property": {"roomsCount": 0, "value": 650000}},
        ]})
        permit = api.post("/api/pf/permit", json={"permit_number": "711"}).json()["permit"]
        assert permit["bedrooms"] == "studio"
        assert permit["price"] == 650000

    def test_permit_not_found(self, api, fake_session, galahome_credential) -> None:
        fake_session.routes[("GET", "/v1/compliances/999/CN-1100636")] = FakeResponse(404, {})
        resp = api.post("/api/pf/permit", json={"permit_number": "999"})
        assert resp.status_code == 404
        assert "not found" in resp.json()["message"]

    def test_test_connection_saves_agents(self, api, fake_session) -> None:
        fake_session.routes[("GET", "/v1/users")] = FakeResponse(200, {"data": [{"agents": [
            {"id": 7, "name": "Sara Khan", "publicProfileId": "sk"},
        ]}]})
        resp = api.post("/api/pf/test-connection", json={
            "account_id": "vamrealty", "api_key": "k", "api_secret": "s", "save": True,
        })
        assert resp.json()["agents"] == [{"id": 7, "name": "Sara Khan", "public_profile_id": "sk"}]
        settings = api.get("/api/settings/vamrealty").json()
        assert settings["api_key"] == "k"
        assert settings["api_secret"] == "********"
        assert settings["agents"][0]["name"] == "Sara Khan"

    def test_test_connection_bad_credentials(self, api, fake_session) -> None:
        fake_session.routes[("POST", "/v1/auth/token")] = FakeResponse(401, {"message": "invalid"})
        resp = api.post("/api/pf/test-connection", json={"account_id": "galahome", "api_key": "k", "api_secret": "x"})
        assert resp.status_code == 401

    def test_test_connection_requires_keys(self, api) -> None:
        assert api.post("/api/pf/test-connection", json={"account_id": "galahome"}).status_code == 400


def test_account_settings_put(api) -> None:
    resp = api.put("/api/settings/galahome", json={
        "api_key": "k", "api_secret": "s", "license_number": "CN-1",
        "agents": [{"id": 1, "name": "A"}],
    })
    assert resp.json()["settings"]["license_number"] == "CN-1"
    assert api.get("/api/settings/galahome").json()["agents"] == [{"id": 1, "name": "A", "public_profile_id": ""}]
    assert api.put("/api/settings/nobody", json={}).status_code == 400


class TestScraper:
    def test_scrape_append_export_clear(self, api) -> None:
        body = api.post("/api/scraper", json={"location": "51", "seed": 1, "append_to_master": True}).json()
        assert body["total"] == 25
        assert body["appended"] == 25
        assert len(api.get("/api/scraper/results").json()) == 25

        api.post("/api/scraper/results", json={"records": body["results"][:5]})
        assert len(api.get("/api/scraper/results").json()) == 30

        export = api.post("/api/scraper/export", json={"location": "51"})
        assert export.headers["content-type"].startswith("text/csv")
        assert "property_finder_dubai-marina_" in export.headers["content-disposition"]
        assert len(export.text.strip().splitlines()) == 31

        assert api.delete("/api/scraper/results").json()["cleared"] == 30

    def test_scrape_requires_location(self, api) -> None:
        assert api.post("/api/scraper", json={"location": ""}).status_code == 400


class TestImages:
    def test_upload_and_rotate(self, api) -> None:
        resp = api.post(
            "/api/image-upload",
            files=[("files", ("a.jpg", b"a", "image/jpeg")), ("files", ("b.png", b"b", "image/png"))],
            data={"location": "Business Bay"},
        )
        body = resp.json()
        assert body["success"] is True
        assert len(body["urls"]) == 2
        assert body["images"][0]["storage_key"].startswith("business-bay/")

        assert len(api.get("/api/images", params={"location": "Business Bay"}).json()) == 2
        first = api.get("/api/images/next", params={"location": "Business Bay"}).json()["name"]
        second = api.get("/api/images/next", params={"location": "Business Bay"}).json()["name"]
        assert [first, second] == ["a.jpg", "b.png"]

    def test_upload_without_files(self, api) -> None:
        assert api.post("/api/image-upload", data={"location": "JVC"}).status_code == 400


class TestTemplates:
    def test_defaults_seeded_on_startup(self, api) -> None:
        assert len(api.get("/api/templates").json()) == len(templating.DEFAULT_TEMPLATES)
        assert {t["type"] for t in api.get("/api/templates", params={"type": "whatsapp"}).json()} == {"whatsapp"}

    def test_save_render_delete(self, api) -> None:
        saved = api.post("/api/templates", json={
            "name": "Price drop", "type": "email", "subject": "{{property_name}}",
            "content": "<p>New price: AED {{price}}</p>",
        }).json()["template"]
        assert saved["variables"] == ["price", "property_name"]

        rendered = api.post(f"/api/templates/{saved['id']}/render", json={"values": {"price": "1,000"}}).json()
        assert rendered["content"] == "<p>New price: AED 1,000</p>"
        assert rendered["text"] == "New price: AED 1,000"
        assert rendered["missing"] == ["property_name"]

        assert api.delete(f"/api/templates/{saved['id']}").json()["success"] is True
        assert api.post(f"/api/templates/{saved['id']}/render", json={}).status_code == 404

    def test_categories(self, api) -> None:
        categories = api.get("/api/templates/categories").json()
        assert set(categories) == {"email", "property", "whatsapp"}
        assert "Luxury" in categories["property"]

    def test_invalid_type(self, api) -> None:
        resp = api.post("/api/templates", json={"name": "x", "type": "sms", "content": "y"})
        assert resp.status_code == 400


def test_leads_and_scheduler_status(api) -> None:
    assert api.get("/api/leads").json() == []
    status = api.get("/api/scheduler/status").json()
    assert status["running"] is False
