# ==============================================================================
# storebonus/calculator/staff.py
# ------------------------------------------------------------------------------
# Staff master list: roles, branches and the reporting standards.
# ==============================================================================

import logging

from sqlalchemy.exc import SQLAlchemyError

from storebonus import db
from storebonus.errors import BonusError, PersistenceError
from storebonus.models import StaffMember
from .schema import StaffRole

STAFF_FIELDS = ('staff_id', 'name', 'role', 'branch', 'customer_id', 'points_standard', 'cosmetic_standard')


def list_staff():
    return StaffMember.query.order_by(StaffMember.staff_id, StaffMember.name).all()


def staff_by_name():
    return {s.name: s for s in StaffMember.query.all()}


def roles_by_name():
    return {s.name: StaffRole(s.role) for s in StaffMember.query.all()}


def save_staff(data):
    """Creates or updates the staff member with ``data['name']``."""
    name = (data.get('name') or '').strip()
    if not name:
        raise BonusError('A staff member needs a name.')
    try:
        member = StaffMember.query.filter_by(name=name).first()
        if member is None:
            member = StaffMember(name=name)
            db.session.add(member)
        for field in STAFF_FIELDS:
            if field in data and field not in ('name', 'role'):
                setattr(member, field, data[field])
        member.staff_id = member.staff_id or ''
        member.role = StaffRole(data.get('role') or member.role or StaffRole.SALES.value).value
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logging.error(f"Saving staff member '{name}' failed: {e}", exc_info=True)
        raise PersistenceError(f"Could not save staff member '{name}'.") from e
    return member


def set_roles(roles):
    """Stores the roles chosen for people found in a sales report."""
    for name, role in roles.items():
        save_staff({'name': name, 'role': StaffRole(role).value})


def import_staff(records, overwrite=False):
    """
    Adds parsed staff rows. Existing names are kept unless ``overwrite``.

    Returns:
        int: number of members created or updated.
    """
    existing = {s.name for s in StaffMember.query.all()}
    count = 0
    for record in records:
        if record['name'] in existing and not overwrite:
            continue
        save_staff(record)
        count += 1
    logging.info(f"Imported {count} staff members.")
    return count


def delete_staff(name):
    try:
        StaffMember.query.filter_by(name=name).delete(synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceError(f"Could not delete staff member '{name}'.") from e


def unknown_people(names):
    """Names from a sales report with no staff record yet."""
    known = {s.name for s in StaffMember.query.with_entities(StaffMember.name).all()}
    return sorted(set(names) - known)
