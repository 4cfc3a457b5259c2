from __future__ import annotations

import uuid

from sqlalchemy import func, select

from app.casetrack.core.context import RequestContext
from app.casetrack.core.periods import PeriodKey
from app.casetrack.core.security import create_user_access_token
from app.casetrack.db.models import (
    Area,
    AreaBranch,
    Branch,
    Client,
    ClientPeriodStatus,
    Organization,
    Permission,
    Product,
    StatusEvent,
    StatusReason,
    StatusTransitionRule,
    StatusType,
    User,
    UserArea,
    UserBranch,
    UserPermission,
)
from app.casetrack.services.status_update import StatusUpdateRequest

STATUS_PERMISSIONS = ("status:read", "status:update", "status:bulk_update")


def _suffix() -> str:
    return uuid.uuid4().hex[:8]


def organization(db_session, code: str = "FCASH") -> Organization:
    return db_session.execute(select(Organization).where(Organization.code == code)).scalars().one()


def status_type(db_session, code: str) -> StatusType:
    return db_session.execute(select(StatusType).where(StatusType.code == code)).scalars().one()


def status_reason(db_session, code: str) -> StatusReason:
    return db_session.execute(select(StatusReason).where(StatusReason.code == code)).scalars().one()


def create_branch(db_session, *, code: str | None = None, is_active: bool = True) -> Branch:
    code = code or f"BR-{_suffix()}"
    branch = Branch(id=uuid.uuid4(), code=code, name=f"Branch {code}", is_active=is_active)
    db_session.add(branch)
    db_session.commit()
    return branch


def create_area(db_session, *, organization_id, branches=()) -> Area:
    code = f"AR-{_suffix()}"
    area = Area(id=uuid.uuid4(), organization_id=organization_id, code=code, name=f"Area {code}")
    db_session.add(area)
    db_session.flush()
    for branch in branches:
        db_session.add(AreaBranch(area_id=area.id, branch_id=branch.id))
    db_session.commit()
    return area


def create_client(db_session, *, branch: Branch | None, product_code: str = "FCASH_SSS") -> Client:
    product = db_session.execute(select(Product).where(Product.code == product_code)).scalars().one()
    code = f"CL-{_suffix()}"
    client = Client(
        id=uuid.uuid4(),
        client_code=code,
        full_name=f"Client {code}",
        pension_number=f"PN-{code}",
        branch_id=branch.id if branch else None,
        product_id=product.id,
    )
    db_session.add(client)
    db_session.commit()
    return client


def create_user(db_session, *, is_active: bool = True) -> User:
    suffix = _suffix()
    user = User(id=uuid.uuid4(), email=f"user-{suffix}@example.com", display_name=f"User {suffix}", is_active=is_active)
    db_session.add(user)
    db_session.commit()
    return user


def grant_permissions(db_session, *, user: User, organization_id, codes, scope: str = "branch") -> None:
    permissions = {
        perm.code: perm
        for perm in db_session.execute(select(Permission).where(Permission.code.in_(list(codes)))).scalars().all()
    }
    for code in codes:
        db_session.add(
            UserPermission(
                user_id=user.id,
                permission_id=permissions[code].id,
                organization_id=organization_id,
                scope=scope,
            )
        )
    db_session.commit()


def grant_branches(db_session, *, user: User, branches) -> None:
    for branch in branches:
        db_session.add(UserBranch(user_id=user.id, branch_id=branch.id))
    db_session.commit()


def grant_areas(db_session, *, user: User, areas) -> None:
    for area in areas:
        db_session.add(UserArea(user_id=user.id, area_id=area.id))
    db_session.commit()


def create_status_user(
    db_session,
    *,
    organization_id,
    branches=(),
    permissions=STATUS_PERMISSIONS,
    territory_scope: str | None = None,
) -> User:
    """User holding `permissions`; `territory_scope="all"` grants clients:read with all scope."""
    user = create_user(db_session)
    if permissions:
        grant_permissions(db_session, user=user, organization_id=organization_id, codes=permissions)
    if territory_scope:
        grant_permissions(db_session, user=user, organization_id=organization_id, codes=["clients:read"], scope=territory_scope)
    if branches:
        grant_branches(db_session, user=user, branches=branches)
    return user


def add_transition_rule(db_session, *, organization_id, from_code: str | None, to_code: str, effect: str = "deny"):
    rule = StatusTransitionRule(
        organization_id=organization_id,
        from_status_type_id=status_type(db_session, from_code).id if from_code else None,
        to_status_type_id=status_type(db_session, to_code).id,
        effect=effect,
    )
    db_session.add(rule)
    db_session.commit()
    return rule


def actor_for(user: User, organization_id, trace_id: str = "trace-test") -> RequestContext:
    return RequestContext(user_id=str(user.id), organization_id=str(organization_id), trace_id=trace_id)


def auth_headers(user: User, organization_id, **extra) -> dict:
    token = create_user_access_token(user, organization_id)
    return {"Authorization": f"Bearer {token}", **extra}


def monthly_request(
    client: Client,
    status: StatusType,
    *,
    year: int = 2024,
    month: int = 1,
    reason: StatusReason | None = None,
    remarks: str | None = None,
    has_payment: bool = False,
) -> StatusUpdateRequest:
    return StatusUpdateRequest(
        client_id=str(client.id),
        period=PeriodKey.monthly(year, month),
        status_type_id=str(status.id),
        reason_id=str(reason.id) if reason else None,
        remarks=remarks,
        has_payment=has_payment,
    )


def update_payload(
    client_id,
    status_id,
    *,
    year: int = 2024,
    month: int | None = 1,
    quarter: int | None = None,
    reason_id=None,
    remarks: str | None = None,
    has_payment: bool = False,
) -> dict:
    return {
        "client_id": str(client_id),
        "period_type": "quarterly" if quarter else "monthly",
        "period_year": year,
        "period_month": None if quarter else month,
        "period_quarter": quarter,
        "status_type_id": str(status_id),
        "reason_id": str(reason_id) if reason_id else None,
        "remarks": remarks,
        "has_payment": has_payment,
    }


def count_statuses(db_session) -> int:
    return db_session.scalar(select(func.count()).select_from(ClientPeriodStatus))


def count_events(db_session) -> int:
    return db_session.scalar(select(func.count()).select_from(StatusEvent))


def event_sequences(db_session, status_id) -> list[int]:
    stmt = (
        select(StatusEvent.event_sequence)
        .where(StatusEvent.client_period_status_id == status_id)
        .order_by(StatusEvent.event_sequence)
    )
    return list(db_session.execute(stmt).scalars().all())
