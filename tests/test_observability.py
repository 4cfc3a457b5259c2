import json
import logging
from types import SimpleNamespace

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from starlette.requests import Request
from starlette.responses import Response

from app.casetrack.core.errors import setup_exception_handlers
from app.casetrack.core.metrics import metrics
from app.casetrack.middleware.observability import build_request_log_payload
from tests.status_helpers import (
    auth_headers,
    create_branch,
    create_client,
    create_status_user,
    organization,
    status_type,
    update_payload,
)


def test_build_request_log_payload():
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/casetrack/status/update",
        "headers": [],
        "route": SimpleNamespace(path="/casetrack/status/update"),
    }
    request = Request(scope)
    request.state.trace_id = "trace-1"
    request.state.organization_id = "org-1"
    request.state.user_id = "user-1"
    request.state.error_code = "INVALID_TRANSITION"
    response = Response(status_code=409)

    payload = build_request_log_payload(
        request=request,
        response=response,
        latency_ms=12.3456,
        db_time_ms=4.5678,
        db_queries=7,
    )

    assert payload["event"] == "http_request"
    assert payload["trace_id"] == "trace-1"
    assert payload["organization_id"] == "org-1"
    assert payload["user_id"] == "user-1"
    assert payload["route"] == "/casetrack/status/update"
    assert payload["method"] == "POST"
    assert payload["status_code"] == 409
    assert payload["latency_ms"] == 12.35
    assert payload["db_time_ms"] == 4.57
    assert payload["db_queries"] == 7
    assert payload["error_code"] == "INVALID_TRANSITION"


def test_request_log_counts_queries(client, caplog):
    caplog.set_level(logging.INFO, logger="casetrack.request")

    response = client.get("/ready", headers={"X-Trace-ID": "trace-log-1"})

    assert response.status_code == 200
    entries = [json.loads(record.getMessage()) for record in caplog.records if record.name == "casetrack.request"]
    entry = next(item for item in entries if item["trace_id"] == "trace-log-1")
    assert entry["route"] == "/ready"
    assert entry["status_code"] == 200
    assert entry["db_queries"] >= 1
    assert entry["db_time_ms"] >= 0


def test_lock_timeout_increments_metric():
    metrics.reset()
    app = FastAPI()
    setup_exception_handlers(app)

    @app.get("/lock-timeout")
    def lock_timeout():
        raise OperationalError("UPDATE client_period_status", {}, Exception("database is locked"))

    with TestClient(app, raise_server_exceptions=False) as client:
        response = client.get("/lock-timeout")

    assert response.status_code == 409
    assert response.json()["code"] == "LOCK_TIMEOUT"

    content = metrics.render().content.decode("utf-8")
    if metrics.enabled:
        assert "lock_wait_timeout_total 1.0" in content
    else:
        assert "metrics_disabled" in content


def test_metrics_endpoint_reports_status_outcomes(client, seeded):
    org = organization(seeded)
    branch = create_branch(seeded)
    user = create_status_user(seeded, organization_id=org.id, branches=[branch])
    outsider = create_client(seeded, branch=create_branch(seeded))
    headers = auth_headers(user, org.id)

    client.post(
        "/casetrack/status/update",
        headers=headers,
        json=update_payload(create_client(seeded, branch=branch).id, status_type(seeded, "CALLED").id),
    )
    client.post(
        "/casetrack/status/update",
        headers=headers,
        json=update_payload(outsider.id, status_type(seeded, "CALLED").id),
    )

    response = client.get("/casetrack/ops/metrics")

    assert response.status_code == 200
    content = response.text
    assert 'status_updates_total{result="SUCCESS"} 1.0' in content
    assert 'status_updates_total{result="FORBIDDEN"} 1.0' in content
    assert "http_requests_total" in content
