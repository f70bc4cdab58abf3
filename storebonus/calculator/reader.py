# ==============================================================================
# storebonus/calculator/reader.py
# ------------------------------------------------------------------------------
# Reads uploaded spreadsheets into plain row dicts and parses the small
# lookup lists (pharmacist points, rewards, staff) that go with them.
# ==============================================================================

import datetime

import pandas as pd

from .engine import number_value, text_value
from .rows import ExclusionItem, RewardRule
from .schema import COL_SALES_PERSON, REQUIRED_SALES_COLUMNS, REWARD_FORMAT_CASH, StaffRole


def _cell(value):
    """Converts a pandas cell to a JSON-friendly Python value; blanks become None."""
    if value is None:
        return None
    if isinstance(value, (pd.Timestamp, datetime.datetime)):
        return value.strftime('%Y-%m-%d')
    if isinstance(value, datetime.date):
        return value.isoformat()
    if pd.isna(value):
        return None
    if hasattr(value, 'item'):
        value = value.item()
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def read_sheet_rows(source):
    """
    Reads the first worksheet. The first row holds the headers.

    Args:
        source: a path or a binary file-like object.

    Returns:
        list: one dict per data row, header -> value, blank cells omitted.
    """
    df = pd.read_excel(source, sheet_name=0, dtype=object)
    df.columns = [str(c).strip() for c in df.columns]
    rows = []
    for record in df.to_dict(orient='records'):
        row = {}
        for header, value in record.items():
            if not header or header.startswith('Unnamed:'):
                continue
            value = _cell(value)
            if value is not None:
                row[header] = value
        if row:
            rows.append(row)
    return rows


def read_sales_file(source):
    """
    Reads and validates a POS sales export.

    Returns:
        tuple: (rows, errors). ``rows`` is None when ``errors`` is not empty.
    """
    try:
        df = pd.read_excel(source, sheet_name=0, dtype=object, nrows=0)
    except Exception as e:
        return None, [f"The file is not a readable Excel workbook: {e}"]

    headers = {str(c).strip() for c in df.columns}
    missing = [col for col in REQUIRED_SALES_COLUMNS if col not in headers]
    if missing:
        return None, [f"Required columns are missing: {', '.join(missing)}"]

    if hasattr(source, 'seek'):
        source.seek(0)
    rows = read_sheet_rows(source)
    if not any(row.get(COL_SALES_PERSON) for row in rows):
        return None, ['No sales person found in the report.']
    return rows, []


def parse_exclusion_rows(rows):
    """Pharmacist point list: 品項編號 and 分類 (or 類別)."""
    items = []
    for row in rows:
        item_id = text_value(row.get('品項編號') or row.get('Item ID'))
        if not item_id:
            continue
        items.append(ExclusionItem(item_id=item_id, category=text_value(row.get('分類') or row.get('類別'))))
    return items


def parse_reward_rules(rows):
    """Reward list: 品項編號, 備註, 類別, 獎勵金額 (or 獎勵/金額) and 形式."""
    rules = []
    for row in rows:
        item_id = text_value(row.get('品項編號'))
        if not item_id:
            continue
        reward = row.get('獎勵金額') or row.get('獎勵') or row.get('金額') or 0
        rules.append(RewardRule(
            item_id=item_id,
            note=text_value(row.get('備註')),
            category=text_value(row.get('類別')),
            reward=number_value(reward),
            reward_label=text_value(reward) if reward else '',
            format=text_value(row.get('形式')) or REWARD_FORMAT_CASH,
        ))
    return rules


def parse_role(text):
    text = text_value(text)
    if '藥師' in text or text == StaffRole.PHARMACIST.value:
        return StaffRole.PHARMACIST
    if '無' in text or 'No' in text or text == StaffRole.NO_BONUS.value:
        return StaffRole.NO_BONUS
    return StaffRole.SALES


def parse_staff_rows(rows):
    """
    Staff master list. Names are the key; the first row for a name wins.

    Returns:
        list: dicts with StaffMember field names.
    """
    staff, seen = [], set()
    for row in rows:
        name = text_value(row.get('員工姓名') or row.get('姓名') or row.get(COL_SALES_PERSON))
        if not name or name in seen:
            continue
        seen.add(name)
        points_standard = number_value(row.get('點數標準') or row.get('Points Std'))
        cosmetic_standard = number_value(row.get('美妝標準') or row.get('Cosmetic Std'))
        staff.append({
            'staff_id': text_value(row.get('員工編號') or row.get('ID')),
            'name': name,
            'role': parse_role(row.get('職位') or row.get('Role')).value,
            'branch': text_value(row.get('分店') or row.get('Branch') or row.get('Store')) or None,
            'customer_id': text_value(row.get('員工客戶編號') or row.get('客戶編號') or row.get('CID')) or None,
            'points_standard': points_standard or None,
            'cosmetic_standard': cosmetic_standard or None,
        })
    return staff
