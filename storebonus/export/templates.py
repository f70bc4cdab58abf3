# ==============================================================================
# storebonus/export/templates.py
# ------------------------------------------------------------------------------
# Storage of the uploaded export templates and their cell mappings, one per
# role.
# ==============================================================================

import io
import json
import logging
import zipfile
from xml.etree.ElementTree import ParseError

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy.exc import SQLAlchemyError

from storebonus import db
from storebonus.calculator.schema import StaffRole
from storebonus.errors import PersistenceError, TemplateError
from storebonus.models import ExportTemplate
from .mapping import DEFAULT_MAPPING, merge_with_defaults

# Raised by openpyxl for a damaged archive or a damaged part inside it
UNREADABLE_WORKBOOK = (zipfile.BadZipFile, InvalidFileException, ParseError, KeyError, ValueError, OSError)


def _open_workbook(data):
    return load_workbook(io.BytesIO(data))


def save_template(role, filename, data):
    """
    Stores a template for a role, replacing any previous one. The stored
    mapping is kept.

    Raises:
        TemplateError: when the bytes are not a readable workbook.
    """
    role = StaffRole(role)
    try:
        _open_workbook(data)
    except UNREADABLE_WORKBOOK as e:
        raise TemplateError(f"'{filename}' is not a readable Excel workbook.") from e

    try:
        record = ExportTemplate.query.filter_by(role=role.value).first()
        if record is None:
            record = ExportTemplate(role=role.value)
            db.session.add(record)
        record.name = filename
        record.data = data
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logging.error(f"Saving template for {role.value} failed: {e}", exc_info=True)
        raise PersistenceError('Could not save the export template.') from e
    logging.info(f"Export template for {role.value} set to '{filename}'.")
    return record


def get_template(role):
    return ExportTemplate.query.filter_by(role=StaffRole(role).value).first()


def get_mapping(record):
    """The record's mapping, or the default mapping when none was saved."""
    if record is None or not record.mapping_json:
        return DEFAULT_MAPPING
    return merge_with_defaults(json.loads(record.mapping_json))


def save_mapping(role, data):
    """Validates and stores a mapping for the role's template."""
    record = get_template(role)
    if record is None:
        raise TemplateError('Upload a template before configuring its mapping.')
    mapping = merge_with_defaults(data)
    try:
        record.mapping_json = json.dumps(mapping.to_dict())
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceError('Could not save the template mapping.') from e
    return mapping


def delete_template(role):
    try:
        ExportTemplate.query.filter_by(role=StaffRole(role).value).delete(synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceError('Could not delete the export template.') from e


def load_template_sheet(record):
    """
    Returns the first worksheet of a stored template, or None when the
    payload cannot be read.
    """
    if record is None or not record.data:
        return None
    try:
        return _open_workbook(record.data).worksheets[0]
    except UNREADABLE_WORKBOOK + (IndexError,) as e:
        logging.warning(f"Stored template '{record.name}' for {record.role} is unreadable: {e}")
        return None
