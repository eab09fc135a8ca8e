"""Tests for the service-level routes."""


class TestServiceRoutes:
    """Tests for the root and health routes."""

    def test_root(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.json() == {"name": "CuraMind API", "status": "ok"}

    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_only_listed_routes_are_served(self, client):
        """There is no database diagnostics route."""
        assert client.get("/test").status_code == 404
        paths = {route.path for route in client.app.routes}
        assert "/test" not in paths

    def test_cors_preflight(self, client):
        """The API has no PATCH routes, so browsers are not offered PATCH."""
        headers = {"Origin": "http://localhost:5173", "Access-Control-Request-Method": "PUT"}
        assert client.options("/api/patients/x", headers=headers).status_code == 200

        headers["Access-Control-Request-Method"] = "PATCH"
        assert client.options("/api/patients/x", headers=headers).status_code == 400
