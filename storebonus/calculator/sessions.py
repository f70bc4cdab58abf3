# ==============================================================================
# storebonus/calculator/sessions.py
# ------------------------------------------------------------------------------
# Named saved calculations, so a run and all its manual edits can be resumed.
# ==============================================================================

import json
import logging

from sqlalchemy.exc import SQLAlchemyError

from storebonus import db
from storebonus.errors import BonusError, PersistenceError
from storebonus.models import CalculationSession
from .rows import PersonSheet


def dump_processed(processed):
    return json.dumps({person: sheet.to_dict() for person, sheet in processed.items()}, ensure_ascii=False)


def load_processed(payload_json):
    data = json.loads(payload_json)
    return {person: PersonSheet.from_dict(sheet) for person, sheet in data.items()}


def save_session(name, processed, report_date=None, session_id=None):
    """Creates a session, or overwrites the one with ``session_id``."""
    try:
        session = db.session.get(CalculationSession, session_id) if session_id else None
        if session is None:
            session = CalculationSession(name=name)
            db.session.add(session)
        session.name = name
        session.report_date = report_date
        session.payload_json = dump_processed(processed)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logging.error(f"Saving session '{name}' failed: {e}", exc_info=True)
        raise PersistenceError('Could not save the calculation session.') from e
    logging.info(f"Saved session {session.id} '{name}' with {len(processed)} people.")
    return session


def get_session(session_id):
    session = db.session.get(CalculationSession, session_id)
    if session is None:
        raise BonusError(f"Session {session_id} does not exist.")
    return session


def load_session(session_id):
    """Returns (session, processed)."""
    session = get_session(session_id)
    return session, load_processed(session.payload_json)


def list_sessions():
    return CalculationSession.query.order_by(CalculationSession.created_at.desc()).all()


def delete_session(session_id):
    session = get_session(session_id)
    try:
        db.session.delete(session)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceError('Could not delete the calculation session.') from e
