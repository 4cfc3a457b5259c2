import uuid
from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.casetrack.core.periods import PeriodKey
from app.casetrack.db.models import ClientPeriodStatus, StatusEvent
from app.casetrack.repos.status import ClientStatusRepository
from app.casetrack.services.status_update import StatusUpdateRequest, StatusUpdateService
from tests.status_helpers import (
    actor_for,
    add_transition_rule,
    count_events,
    count_statuses,
    create_branch,
    create_client,
    create_status_user,
    event_sequences,
    monthly_request,
    organization,
    status_reason,
    status_type,
)


@pytest.fixture()
def territory(seeded):
    org = organization(seeded)
    branch = create_branch(seeded, code=f"B1-{uuid.uuid4().hex[:6]}")
    user = create_status_user(seeded, organization_id=org.id, branches=[branch])
    client = create_client(seeded, branch=branch)
    return org, branch, user, client


def test_first_update_initializes_period(seeded, territory):
    org, _branch, user, client = territory
    service = StatusUpdateService(seeded)

    result = service.apply(actor_for(user, org.id), monthly_request(client, status_type(seeded, "TO_FOLLOW")))

    assert result.success
    assert result.event_sequence == 1
    assert result.update_count == 1
    record = seeded.get(ClientPeriodStatus, uuid.UUID(result.status_id))
    assert record.period_key == "2024-M01"
    assert record.period_month == 1
    assert record.period_quarter is None
    assert record.update_count == 1
    assert record.is_terminal is False
    assert record.updated_by == user.id
    event = seeded.get(StatusEvent, uuid.UUID(result.event_id))
    assert event.client_period_status_id == record.id
    assert event.status_type_id == status_type(seeded, "TO_FOLLOW").id
    assert event.created_by == user.id


def test_done_is_terminal_and_blocks_further_updates(seeded, territory):
    org, _branch, user, client = territory
    service = StatusUpdateService(seeded)
    actor = actor_for(user, org.id)

    first = service.apply(actor, monthly_request(client, status_type(seeded, "TO_FOLLOW")))
    second = service.apply(actor, monthly_request(client, status_type(seeded, "DONE")))

    assert second.success
    assert second.status_id == first.status_id
    assert second.update_count == 2
    assert second.is_terminal is True
    assert second.event_sequence == 2

    third = service.apply(actor, monthly_request(client, status_type(seeded, "CALLED")))

    assert not third.success
    assert third.code == "INVALID_TRANSITION"
    assert third.details["rule"] == "TERMINAL_STATUS"
    record = seeded.get(ClientPeriodStatus, uuid.UUID(first.status_id))
    assert record.update_count == 2
    assert event_sequences(seeded, record.id) == [1, 2]


def test_sequential_updates_keep_sequences_and_counts_in_step(seeded, territory):
    org, _branch, user, client = territory
    service = StatusUpdateService(seeded)
    actor = actor_for(user, org.id)
    codes = ["PENDING", "TO_FOLLOW", "CALLED", "VISITED", "UPDATED", "CALLED", "UPDATED"]

    results = [service.apply(actor, monthly_request(client, status_type(seeded, code))) for code in codes]

    assert all(result.success for result in results)
    assert [result.event_sequence for result in results] == list(range(1, len(codes) + 1))
    assert [result.update_count for result in results] == list(range(1, len(codes) + 1))
    assert event_sequences(seeded, results[0].status_id) == list(range(1, len(codes) + 1))


def test_periods_are_tracked_independently(seeded, territory):
    org, _branch, user, client = territory
    service = StatusUpdateService(seeded)
    actor = actor_for(user, org.id)

    january = service.apply(actor, monthly_request(client, status_type(seeded, "DONE"), month=1))
    february = service.apply(actor, monthly_request(client, status_type(seeded, "CALLED"), month=2))
    quarterly = service.apply(
        actor,
        StatusUpdateRequest(
            client_id=str(client.id),
            period=PeriodKey.quarterly(2024, 1),
            status_type_id=str(status_type(seeded, "CALLED").id),
        ),
    )

    assert january.success and february.success and quarterly.success
    assert len({january.status_id, february.status_id, quarterly.status_id}) == 3
    assert february.event_sequence == 1
    assert seeded.get(ClientPeriodStatus, uuid.UUID(quarterly.status_id)).period_key == "2024-Q1"


def test_client_outside_territory_is_forbidden_without_writes(seeded, territory):
    org, _branch, user, _client = territory
    other_branch = create_branch(seeded, code=f"B2-{uuid.uuid4().hex[:6]}")
    outsider = create_client(seeded, branch=other_branch)

    result = StatusUpdateService(seeded).apply(
        actor_for(user, org.id), monthly_request(outsider, status_type(seeded, "TO_FOLLOW"))
    )

    assert not result.success
    assert result.code == "FORBIDDEN"
    assert count_statuses(seeded) == 0
    assert count_events(seeded) == 0


def test_missing_permission_is_forbidden(seeded, territory):
    org, branch, _user, client = territory
    reader = create_status_user(seeded, organization_id=org.id, branches=[branch], permissions=["status:read"])

    result = StatusUpdateService(seeded).apply(
        actor_for(reader, org.id), monthly_request(client, status_type(seeded, "TO_FOLLOW"))
    )

    assert result.code == "FORBIDDEN"
    assert result.details == {"permission": "status:update"}
    assert count_statuses(seeded) == 0


def test_no_territory_is_forbidden_before_client_lookup(seeded):
    org = organization(seeded)
    user = create_status_user(seeded, organization_id=org.id)

    result = StatusUpdateService(seeded).apply(
        actor_for(user, org.id),
        StatusUpdateRequest(
            client_id=str(uuid.uuid4()),
            period=PeriodKey.monthly(2024, 1),
            status_type_id=str(status_type(seeded, "TO_FOLLOW").id),
        ),
    )

    assert result.code == "FORBIDDEN"
    assert result.details == {"scope": "none"}


def test_unknown_and_soft_deleted_clients_are_not_found(seeded, territory):
    org, branch, user, client = territory
    service = StatusUpdateService(seeded)
    actor = actor_for(user, org.id)
    removed = create_client(seeded, branch=branch)
    removed.deleted_at = removed.created_at
    seeded.commit()

    missing = service.apply(
        actor,
        StatusUpdateRequest(
            client_id=str(uuid.uuid4()),
            period=PeriodKey.monthly(2024, 1),
            status_type_id=str(status_type(seeded, "TO_FOLLOW").id),
        ),
    )
    deleted = service.apply(actor, monthly_request(removed, status_type(seeded, "TO_FOLLOW")))

    assert missing.code == "NOT_FOUND"
    assert deleted.code == "NOT_FOUND"


def test_client_of_other_organization_is_forbidden(seeded, territory):
    org, branch, user, _client = territory
    pcni_client = create_client(seeded, branch=branch, product_code="PCNI_NON_PNP")

    result = StatusUpdateService(seeded).apply(
        actor_for(user, org.id), monthly_request(pcni_client, status_type(seeded, "TO_FOLLOW"))
    )

    assert result.code == "FORBIDDEN"
    assert count_statuses(seeded) == 0


def test_visited_is_not_available_to_other_organization(seeded):
    pcni = organization(seeded, "PCNI")
    branch = create_branch(seeded)
    user = create_status_user(seeded, organization_id=pcni.id, branches=[branch])
    client = create_client(seeded, branch=branch, product_code="PCNI_NON_PNP")

    result = StatusUpdateService(seeded).apply(
        actor_for(user, pcni.id), monthly_request(client, status_type(seeded, "VISITED"))
    )

    assert result.code == "VALIDATION_ERROR"
    assert result.details["rule"] == "STATUS_NOT_AVAILABLE"


def test_reason_rules_are_enforced(seeded, territory):
    org, _branch, user, client = territory
    service = StatusUpdateService(seeded)
    actor = actor_for(user, org.id)
    done = status_type(seeded, "DONE")

    wrong_status = service.apply(
        actor, monthly_request(client, status_type(seeded, "CALLED"), reason=status_reason(seeded, "CONFIRMED"))
    )
    no_remarks = service.apply(actor, monthly_request(client, done, reason=status_reason(seeded, "NOT_REACHABLE")))

    assert wrong_status.details["rule"] == "INVALID_REASON_FOR_STATUS"
    assert no_remarks.details["rule"] == "REMARKS_REQUIRED"
    assert count_statuses(seeded) == 0

    ok = service.apply(
        actor,
        monthly_request(client, done, reason=status_reason(seeded, "NOT_REACHABLE"), remarks="Moved abroad"),
    )
    assert ok.success
    assert ok.is_terminal is True


def test_terminal_reason_marks_record_terminal(seeded, territory):
    org, _branch, user, client = territory
    service = StatusUpdateService(seeded)
    actor = actor_for(user, org.id)

    result = service.apply(
        actor,
        monthly_request(client, status_type(seeded, "DONE"), reason=status_reason(seeded, "DECEASED"), has_payment=True),
    )

    record = seeded.get(ClientPeriodStatus, uuid.UUID(result.status_id))
    assert record.is_terminal is True
    assert record.has_payment is True
    assert record.reason_id == status_reason(seeded, "DECEASED").id


def test_configured_transition_rule_is_applied(seeded, territory):
    org, _branch, user, client = territory
    add_transition_rule(seeded, organization_id=org.id, from_code="CALLED", to_code="PENDING")
    service = StatusUpdateService(seeded)
    actor = actor_for(user, org.id)

    service.apply(actor, monthly_request(client, status_type(seeded, "CALLED")))
    denied = service.apply(actor, monthly_request(client, status_type(seeded, "PENDING")))
    allowed = service.apply(actor, monthly_request(client, status_type(seeded, "TO_FOLLOW")))

    assert denied.code == "INVALID_TRANSITION"
    assert denied.details["rule"] == "TRANSITION_DENIED"
    assert allowed.success
    assert allowed.event_sequence == 2


def test_event_snapshot_matches_written_status(seeded, territory):
    org, _branch, user, client = territory
    service = StatusUpdateService(seeded)

    result = service.apply(
        actor_for(user, org.id),
        monthly_request(client, status_type(seeded, "UPDATED"), remarks="Promised payment", has_payment=True),
    )

    events = seeded.execute(
        select(StatusEvent).where(StatusEvent.client_period_status_id == uuid.UUID(result.status_id))
    ).scalars().all()
    assert len(events) == 1
    assert events[0].remarks == "Promised payment"
    assert events[0].has_payment is True


def test_exhausted_retries_return_conflict_without_writes(seeded, territory):
    org, _branch, user, client = territory
    attempts = []

    def lost_race(self, record, **kwargs):
        attempts.append(record.id)
        raise IntegrityError("INSERT INTO status_events", {}, Exception("UNIQUE constraint failed"))

    with patch.object(ClientStatusRepository, "append_event", lost_race):
        result = StatusUpdateService(seeded, max_attempts=3).apply(
            actor_for(user, org.id), monthly_request(client, status_type(seeded, "TO_FOLLOW"))
        )

    assert not result.success
    assert result.code == "CONFLICT"
    assert result.details == {"period_key": "2024-M01", "attempts": 3}
    assert len(attempts) == 3
    assert count_statuses(seeded) == 0
    assert count_events(seeded) == 0


def test_transition_rule_effect_is_constrained(seeded):
    org = organization(seeded)

    with pytest.raises(IntegrityError):
        add_transition_rule(seeded, organization_id=org.id, from_code="CALLED", to_code="PENDING", effect="block")
    seeded.rollback()
