import json
import logging
import uuid
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from app.casetrack.core.error_catalog import AppError
from app.casetrack.core.periods import PeriodKey
from app.casetrack.db.models import ClientPeriodStatus
from app.casetrack.repos.status import ClientStatusRepository
from app.casetrack.services.bulk_update import BulkUpdateService
from app.casetrack.services.status_update import StatusUpdateRequest, StatusUpdateService
from tests.status_helpers import (
    actor_for,
    count_events,
    count_statuses,
    create_branch,
    create_client,
    create_status_user,
    monthly_request,
    organization,
    status_type,
)


@pytest.fixture()
def batch_setup(seeded):
    org = organization(seeded)
    branch = create_branch(seeded)
    user = create_status_user(seeded, organization_id=org.id, branches=[branch])
    clients = [create_client(seeded, branch=branch) for _ in range(3)]
    return org, branch, user, clients


def _missing_client_request(seeded) -> StatusUpdateRequest:
    return StatusUpdateRequest(
        client_id=str(uuid.uuid4()),
        period=PeriodKey.monthly(2024, 1),
        status_type_id=str(status_type(seeded, "TO_FOLLOW").id),
    )


def test_missing_client_fails_only_its_own_entry(seeded, batch_setup):
    org, _branch, user, clients = batch_setup
    to_follow = status_type(seeded, "TO_FOLLOW")
    missing = _missing_client_request(seeded)
    updates = [monthly_request(clients[0], to_follow), missing, monthly_request(clients[2], to_follow)]

    result = BulkUpdateService(seeded).apply_bulk(actor_for(user, org.id), updates)

    assert result.successful == 2
    assert result.failed == 1
    assert [entry.success for entry in result.results] == [True, False, True]
    assert result.results[1].code == "NOT_FOUND"
    assert result.results[1].client_id == missing.client_id
    assert count_statuses(seeded) == 2
    assert count_events(seeded) == 2


def test_entries_follow_input_order(seeded, batch_setup):
    org, _branch, user, clients = batch_setup
    called = status_type(seeded, "CALLED")
    updates = [monthly_request(client, called) for client in reversed(clients)]

    result = BulkUpdateService(seeded).apply_bulk(actor_for(user, org.id), updates)

    assert [entry.client_id for entry in result.results] == [str(client.id) for client in reversed(clients)]
    assert result.as_dict()["successful"] == 3


def test_invalid_transition_does_not_affect_other_items(seeded, batch_setup):
    org, _branch, user, clients = batch_setup
    actor = actor_for(user, org.id)
    StatusUpdateService(seeded).apply(actor, monthly_request(clients[1], status_type(seeded, "DONE")))

    called = status_type(seeded, "CALLED")
    result = BulkUpdateService(seeded).apply_bulk(actor, [monthly_request(client, called) for client in clients])

    assert [entry.success for entry in result.results] == [True, False, True]
    assert result.results[1].code == "INVALID_TRANSITION"


def test_same_key_twice_in_batch_is_sequenced(seeded, batch_setup):
    org, _branch, user, clients = batch_setup
    updates = [
        monthly_request(clients[0], status_type(seeded, "TO_FOLLOW")),
        monthly_request(clients[0], status_type(seeded, "CALLED")),
    ]

    result = BulkUpdateService(seeded).apply_bulk(actor_for(user, org.id), updates)

    assert [entry.event_sequence for entry in result.results] == [1, 2]
    assert result.results[0].status_id == result.results[1].status_id


def test_no_territory_fails_every_item_without_writes(seeded, batch_setup):
    org, _branch, _user, clients = batch_setup
    stranger = create_status_user(seeded, organization_id=org.id)
    to_follow = status_type(seeded, "TO_FOLLOW")
    updates = [monthly_request(client, to_follow) for client in clients] + [_missing_client_request(seeded)]

    with patch.object(StatusUpdateService, "apply") as apply:
        result = BulkUpdateService(seeded).apply_bulk(actor_for(stranger, org.id), updates)

    apply.assert_not_called()
    assert result.successful == 0
    assert result.failed == len(updates)
    assert {entry.code for entry in result.results} == {"FORBIDDEN"}
    assert count_statuses(seeded) == 0
    assert count_events(seeded) == 0


def test_missing_bulk_permission_rejects_batch(seeded, batch_setup):
    org, branch, _user, clients = batch_setup
    single_only = create_status_user(
        seeded, organization_id=org.id, branches=[branch], permissions=["status:read", "status:update"]
    )

    with pytest.raises(AppError) as exc_info:
        BulkUpdateService(seeded).apply_bulk(
            actor_for(single_only, org.id), [monthly_request(clients[0], status_type(seeded, "CALLED"))]
        )

    assert exc_info.value.error.code == "FORBIDDEN"
    assert count_statuses(seeded) == 0


def test_bulk_permission_is_enough_for_items(seeded, batch_setup):
    org, branch, _user, clients = batch_setup
    bulk_only = create_status_user(seeded, organization_id=org.id, branches=[branch], permissions=["status:bulk_update"])

    result = BulkUpdateService(seeded).apply_bulk(
        actor_for(bulk_only, org.id), [monthly_request(clients[0], status_type(seeded, "CALLED"))]
    )

    assert result.successful == 1


@pytest.mark.parametrize("size", [0, 101])
def test_batch_size_outside_bounds_is_rejected_before_processing(seeded, batch_setup, size):
    org, _branch, user, clients = batch_setup
    updates = [monthly_request(clients[0], status_type(seeded, "CALLED"))] * size

    with pytest.raises(AppError) as exc_info:
        BulkUpdateService(seeded).apply_bulk(actor_for(user, org.id), updates)

    assert exc_info.value.error.code == "VALIDATION_ERROR"
    assert exc_info.value.details["received"] == size
    assert count_statuses(seeded) == 0


def test_batch_of_one_hundred_is_accepted(seeded, batch_setup):
    org, branch, user, _clients = batch_setup
    clients = [create_client(seeded, branch=branch) for _ in range(100)]
    called = status_type(seeded, "CALLED")

    result = BulkUpdateService(seeded).apply_bulk(actor_for(user, org.id), [monthly_request(c, called) for c in clients])

    assert result.successful == 100
    assert count_events(seeded) == 100


def test_unexpected_error_becomes_internal_error_entry(seeded, batch_setup):
    org, _branch, user, clients = batch_setup
    called = status_type(seeded, "CALLED")
    original_apply = StatusUpdateService.apply
    boom_client = str(clients[1].id)

    def flaky_apply(self, actor, request, **kwargs):
        if request.client_id == boom_client:
            raise RuntimeError("storage exploded")
        return original_apply(self, actor, request, **kwargs)

    with patch.object(StatusUpdateService, "apply", flaky_apply):
        result = BulkUpdateService(seeded).apply_bulk(
            actor_for(user, org.id), [monthly_request(client, called) for client in clients]
        )

    assert [entry.success for entry in result.results] == [True, False, True]
    failure = result.results[1]
    assert failure.code == "INTERNAL_ERROR"
    assert failure.details == {"type": "RuntimeError"}
    assert "storage exploded" not in failure.message
    assert count_events(seeded) == 2


def test_failure_after_status_flush_leaves_no_partial_item(seeded, batch_setup, caplog):
    caplog.set_level(logging.ERROR, logger="casetrack.status.bulk")
    org, _branch, user, clients = batch_setup
    called = status_type(seeded, "CALLED")
    called_id = str(called.id)
    broken_client = str(clients[1].id)
    original_append = ClientStatusRepository.append_event

    def failing_append(self, record, **kwargs):
        if str(record.client_id) == broken_client:
            raise RuntimeError("event store offline")
        return original_append(self, record, **kwargs)

    with patch.object(ClientStatusRepository, "append_event", failing_append):
        result = BulkUpdateService(seeded).apply_bulk(
            actor_for(user, org.id, trace_id="trace-bulk-partial"),
            [monthly_request(client, called) for client in clients],
        )

    assert [entry.success for entry in result.results] == [True, False, True]
    assert result.results[1].code == "INTERNAL_ERROR"
    assert [entry.event_sequence for entry in (result.results[0], result.results[2])] == [1, 1]
    assert count_statuses(seeded) == 2
    assert count_events(seeded) == 2
    orphaned = seeded.scalar(
        select(func.count()).select_from(ClientPeriodStatus).where(ClientPeriodStatus.client_id == clients[1].id)
    )
    assert orphaned == 0

    entries = [
        json.loads(record.getMessage()) for record in caplog.records if record.name == "casetrack.status.bulk"
    ]
    failed = next(entry for entry in entries if entry["event"] == "status_bulk_item_failed")
    assert failed["client_id"] == broken_client
    assert failed["status_type_id"] == called_id
    assert failed["period_key"] == "2024-M01"
    assert failed["item_index"] == 1
    assert failed["trace_id"] == "trace-bulk-partial"
    assert failed["error_class"] == "RuntimeError"
