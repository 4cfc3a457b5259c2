from sqlalchemy.exc import OperationalError

from app.casetrack.routers import health


class _BrokenSession:
    def execute(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["trace_id"]


def test_ready(client):
    response = client.get("/ready")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ready"
    assert payload["trace_id"]


def test_ready_reports_database_unavailable(client):
    client.app.dependency_overrides[health.get_db] = lambda: _BrokenSession()
    try:
        response = client.get("/ready", headers={"X-Trace-ID": "trace-ready"})
    finally:
        client.app.dependency_overrides.clear()

    assert response.status_code == 503
    payload = response.json()
    assert payload["code"] == "DB_UNAVAILABLE"
    assert payload["details"] == {"type": "OperationalError"}
    assert payload["trace_id"] == "trace-ready"
