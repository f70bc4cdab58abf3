# ==============================================================================
# storebonus/export/mapping.py
# ------------------------------------------------------------------------------
# Per-role cell mapping for export templates. List fields take a column
# letter; statistic fields take an absolute cell address such as 'B3'.
# ==============================================================================

import dataclasses
import re
from dataclasses import dataclass
from typing import Optional

from storebonus.errors import BonusError

COLUMN_RE = re.compile(r'^[A-Z]{1,2}$')
CELL_RE = re.compile(r'^([A-Z]{1,2})([1-9][0-9]*)$')

SALES_LIST_FIELDS = ('category', 'date', 'customer_id', 'item_id', 'item_name', 'quantity', 'amount', 'note', 'points')
REWARD_LIST_FIELDS = ('reward_category', 'reward_date', 'reward_customer_id', 'reward_item_id',
                      'reward_item_name', 'reward_quantity', 'reward_note', 'reward_value')
STAT_FIELDS = (
    'store_name_cell', 'staff_id_cell', 'staff_name_cell', 'report_date_cell', 'role_cell',
    'total_points_cell', 'own_points_cell', 'incoming_points_cell', 'develop_points_cell', 'return_points_cell',
    'points_standard_cell', 'points_gap_cell', 'cosmetic_total_cell', 'cosmetic_standard_cell', 'cosmetic_gap_cell',
    'cash_reward_cell', 'voucher_count_cell', 'dispensing_self_paid_cell', 'dispensing_service_cell',
    'dispensing_bonus_cell',
)


@dataclass(frozen=True)
class TemplateMapping:
    """
    Where the exporter writes into a template. ``None`` means the field is
    not written.
    """
    start_row: int = 2
    rewards_start_row: Optional[int] = None

    category: Optional[str] = None
    date: Optional[str] = None
    customer_id: Optional[str] = None
    item_id: Optional[str] = None
    item_name: Optional[str] = None
    quantity: Optional[str] = None
    amount: Optional[str] = None
    note: Optional[str] = None
    points: Optional[str] = None

    reward_category: Optional[str] = None
    reward_date: Optional[str] = None
    reward_customer_id: Optional[str] = None
    reward_item_id: Optional[str] = None
    reward_item_name: Optional[str] = None
    reward_quantity: Optional[str] = None
    reward_note: Optional[str] = None
    reward_value: Optional[str] = None

    store_name_cell: Optional[str] = None
    staff_id_cell: Optional[str] = None
    staff_name_cell: Optional[str] = None
    report_date_cell: Optional[str] = None
    role_cell: Optional[str] = None
    total_points_cell: Optional[str] = None
    own_points_cell: Optional[str] = None
    incoming_points_cell: Optional[str] = None
    develop_points_cell: Optional[str] = None
    return_points_cell: Optional[str] = None
    points_standard_cell: Optional[str] = None
    points_gap_cell: Optional[str] = None
    cosmetic_total_cell: Optional[str] = None
    cosmetic_standard_cell: Optional[str] = None
    cosmetic_gap_cell: Optional[str] = None
    cash_reward_cell: Optional[str] = None
    voucher_count_cell: Optional[str] = None
    dispensing_self_paid_cell: Optional[str] = None
    dispensing_service_cell: Optional[str] = None
    dispensing_bonus_cell: Optional[str] = None

    def sales_columns(self):
        """[(field, column letter)] for the bound sales-list fields."""
        return [(f, getattr(self, f)) for f in SALES_LIST_FIELDS if getattr(self, f)]

    def reward_columns(self):
        return [(f, getattr(self, f)) for f in REWARD_LIST_FIELDS if getattr(self, f)]

    def stat_cells(self):
        return [(f, getattr(self, f)) for f in STAT_FIELDS if getattr(self, f)]

    def to_dict(self):
        return dataclasses.asdict(self)


DEFAULT_MAPPING = TemplateMapping(
    start_row=2,
    category='A', date='B', customer_id='C', item_id='D', item_name='E',
    quantity='F', amount='G', note='H', points='I',
)


def parse_column(value):
    """'aa ' -> 'AA'; blank -> None. Raises BonusError for anything but 1-2 letters."""
    if value is None:
        return None
    text = str(value).strip().upper()
    if not text:
        return None
    if not COLUMN_RE.match(text):
        raise BonusError(f"'{value}' is not a column letter.")
    return text


def parse_cell(value):
    """'b3' -> 'B3'; blank -> None. Raises BonusError for anything but letter+row."""
    if value is None:
        return None
    text = str(value).strip().upper()
    if not text:
        return None
    if not CELL_RE.match(text):
        raise BonusError(f"'{value}' is not a cell address.")
    return text


def _parse_row_number(value, default):
    if value in (None, ''):
        return default
    try:
        row = int(value)
    except (TypeError, ValueError):
        raise BonusError(f"'{value}' is not a row number.")
    if row < 1:
        raise BonusError('Row numbers start at 1.')
    return row


def merge_with_defaults(data, defaults=DEFAULT_MAPPING):
    """
    Builds a TemplateMapping from stored or submitted data. Keys missing
    from ``data`` keep the default; keys present but blank are unbound.

    Raises:
        BonusError: on an invalid column, cell or row number.
    """
    data = data or {}
    values = {}
    for f in dataclasses.fields(TemplateMapping):
        if f.name not in data:
            continue
        raw = data[f.name]
        if f.name in ('start_row', 'rewards_start_row'):
            values[f.name] = _parse_row_number(raw, getattr(defaults, f.name))
        elif f.name.endswith('_cell'):
            values[f.name] = parse_cell(raw)
        else:
            values[f.name] = parse_column(raw)
    return dataclasses.replace(defaults, **values)
