# ==============================================================================
# storebonus/errors.py
# ------------------------------------------------------------------------------
# Exception types raised by the calculator, the history store and the exporter.
# ==============================================================================


class BonusError(Exception):
    """Base class for all errors raised by this application."""
    status_code = 400


class PersistenceError(BonusError):
    """A read or write against the local history database failed."""
    status_code = 500


class TemplateError(BonusError):
    """An uploaded export template could not be read as a workbook."""


class ProductGroupConflictError(BonusError):
    """An item ID is already claimed by a different product group."""
    status_code = 409

    def __init__(self, item_id, existing_group):
        self.item_id = item_id
        self.existing_group = existing_group
        super().__init__(f"Item '{item_id}' already belongs to group '{existing_group}'.")


class ConfirmationRequired(BonusError):
    """A destructive operation was invoked without its confirmation phrase."""
    status_code = 428
