from sqlalchemy import select

from app.casetrack.core.config import settings
from app.casetrack.db.models import (
    Organization,
    Permission,
    Product,
    StatusReason,
    StatusType,
)


DEFAULT_PERMISSIONS = [
    ("clients:read", "View clients"),
    ("status:read", "View client statuses and history"),
    ("status:update", "Update a client status"),
    ("status:bulk_update", "Update client statuses in bulk"),
]

SECONDARY_ORGANIZATIONS = [("PCNI", "PCNI")]

# (code, name, sequence, organization code or None, is_terminal, requires_reason)
DEFAULT_STATUS_TYPES = [
    ("PENDING", "Pending", 1, None, False, False),
    ("TO_FOLLOW", "To Follow", 2, None, False, False),
    ("CALLED", "Called", 3, None, False, False),
    ("VISITED", "Visited", 4, settings.DEFAULT_ORGANIZATION_CODE, False, False),
    ("UPDATED", "Updated", 5, None, False, False),
    ("DONE", "Done", 6, None, True, False),
]

# (code, name, status code, is_terminal, requires_remarks)
DEFAULT_STATUS_REASONS = [
    ("DECEASED", "Deceased", "DONE", True, False),
    ("FULLY_PAID", "Fully Paid", "DONE", True, False),
    ("CONFIRMED", "Confirmed", "DONE", False, False),
    ("NOT_REACHABLE", "Not Reachable", "DONE", False, True),
]

# (code, name, organization code, tracking cycle)
DEFAULT_PRODUCTS = [
    ("FCASH_SSS", "FCASH SSS", settings.DEFAULT_ORGANIZATION_CODE, "monthly"),
    ("FCASH_GSIS", "FCASH GSIS", settings.DEFAULT_ORGANIZATION_CODE, "monthly"),
    ("PCNI_NON_PNP", "PCNI Non-PNP", "PCNI", "monthly"),
    ("PCNI_PNP", "PCNI PNP", "PCNI", "quarterly"),
]


def _get_or_create_organizations(db) -> dict[str, Organization]:
    existing = {org.code: org for org in db.execute(select(Organization)).scalars().all()}
    wanted = [(settings.DEFAULT_ORGANIZATION_CODE, settings.DEFAULT_ORGANIZATION_NAME), *SECONDARY_ORGANIZATIONS]
    for code, name in wanted:
        if code in existing:
            continue
        organization = Organization(code=code, name=name)
        db.add(organization)
        existing[code] = organization
    db.flush()
    return existing


def _get_or_create_permissions(db):
    existing = {perm.code for perm in db.execute(select(Permission)).scalars().all()}
    for code, description in DEFAULT_PERMISSIONS:
        if code in existing:
            continue
        resource, action = code.split(":", 1)
        db.add(Permission(code=code, resource=resource, action=action, description=description))


def _get_or_create_status_types(db, organizations) -> dict[str, StatusType]:
    existing = {status.code: status for status in db.execute(select(StatusType)).scalars().all()}
    for code, name, sequence, org_code, is_terminal, requires_reason in DEFAULT_STATUS_TYPES:
        if code in existing:
            continue
        organization = organizations.get(org_code) if org_code else None
        status_type = StatusType(
            code=code,
            name=name,
            sequence=sequence,
            organization_id=organization.id if organization else None,
            is_terminal=is_terminal,
            requires_reason=requires_reason,
        )
        db.add(status_type)
        existing[code] = status_type
    db.flush()
    return existing


def _get_or_create_status_reasons(db, status_types):
    existing = {reason.code for reason in db.execute(select(StatusReason)).scalars().all()}
    for code, name, status_code, is_terminal, requires_remarks in DEFAULT_STATUS_REASONS:
        if code in existing:
            continue
        db.add(
            StatusReason(
                code=code,
                name=name,
                status_type_id=status_types[status_code].id,
                is_terminal=is_terminal,
                requires_remarks=requires_remarks,
            )
        )


def _get_or_create_products(db, organizations):
    existing = {product.code for product in db.execute(select(Product)).scalars().all()}
    for code, name, org_code, tracking_cycle in DEFAULT_PRODUCTS:
        if code in existing or org_code not in organizations:
            continue
        db.add(
            Product(
                code=code,
                name=name,
                organization_id=organizations[org_code].id,
                tracking_cycle=tracking_cycle,
            )
        )


def run_seed(db):
    organizations = _get_or_create_organizations(db)
    _get_or_create_permissions(db)
    status_types = _get_or_create_status_types(db, organizations)
    _get_or_create_status_reasons(db, status_types)
    _get_or_create_products(db, organizations)
    db.commit()
