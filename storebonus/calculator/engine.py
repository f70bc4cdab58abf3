# ==============================================================================
# storebonus/calculator/engine.py
# ------------------------------------------------------------------------------
# Point classification: turns raw POS rows into classified stage-1 rows,
# matches reward rules (stage 2) and totals cosmetic sales (stage 3).
# ==============================================================================

import logging
import uuid

import pandas as pd

from storebonus.errors import BonusError
from storebonus.models import AppSetting
from .rows import PersonSheet, Stage1Row, Stage2Row, Stage3Row, Stage3Summary
from .schema import (
    CAT_ADULT_FORMULA, CAT_DISPENSING, CAT_INFANT_CEREAL, CAT_OTHER, CAT_PEDIATRIC_CASH, CAT_RETURN,
    CATEGORY_MAP, CEREAL_CODE, CEREAL_KEYWORDS, COL_CAT_1, COL_CAT_2, COL_CUSTOMER_ID, COL_CUSTOMER_NAME,
    COL_DEBT, COL_DISCOUNT_RATIO, COL_ITEM_ID, COL_ITEM_NAME, COL_ITEM_NAME_ALT, COL_POINTS, COL_POINTS_ALT,
    COL_QUANTITY, COL_RETURN_TARGET, COL_SALES_DATE, COL_SALES_PERSON, COL_SUBTOTAL, COL_TICKET_NO, COL_UNIT,
    COL_UNIT_PRICE, COL_UNIT_PRICE_ALT, COSMETIC_CODES, COSMETIC_DISPLAY_ORDER, DEFAULT_REPURCHASE_OPTIONS,
    DISPENSING_ITEMS, DISPENSING_REWARD_CATEGORY, EXCLUDED_MILK_CODE, EXCLUDED_MILK_UNITS, NO_DEVELOPER,
    PHARMACIST_DIVIDED_CATEGORIES, PHARMACIST_FORMULA_CODE, REWARD_FORMAT_COUNT, ROLE_PRIORITY,
    SALES_DIVIDED_CATEGORIES, STAGE1_SORT_ORDER, UNDEFINED_SENTINEL, UNLISTED_SORT_ORDER, Stage1Status,
    StaffRole,
)

UNKNOWN_PERSON = 'Unknown'

# --- Configuration Loader Class ---

class CalculationConfig:
    """
    Business rules users may tune, loaded from the AppSetting table.
    Build one per calculation with ``CalculationConfig.load()``.
    """

    def __init__(self, dispensing_threshold=300, dispensing_rate=10,
                 default_role=StaffRole.SALES, repurchase_options=None):
        self.dispensing_threshold = dispensing_threshold
        self.dispensing_rate = dispensing_rate
        self.default_role = StaffRole(default_role)
        self.repurchase_options = list(repurchase_options or DEFAULT_REPURCHASE_OPTIONS)

    @classmethod
    def load(cls):
        settings = {s.key: s.get_value() for s in AppSetting.query.all()}
        config = cls(
            dispensing_threshold=settings.get('DISPENSING_BONUS_THRESHOLD', 300),
            dispensing_rate=settings.get('DISPENSING_BONUS_RATE', 10),
            default_role=settings.get('DEFAULT_STAFF_ROLE', StaffRole.SALES.value),
            repurchase_options=settings.get('REPURCHASE_OPTIONS'),
        )
        logging.info(f"CalculationConfig loaded: dispensing threshold {config.dispensing_threshold}, "
                     f"rate {config.dispensing_rate}, default role {config.default_role.value}.")
        return config


# --- Helper Functions ---

def text_value(value):
    """Cell value as trimmed text; integral floats lose their '.0'."""
    if value is None:
        return ''
    if isinstance(value, float):
        if pd.isna(value):
            return ''
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


def number_value(value):
    """Cell value as a number (int when integral); blanks and junk count as 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, str):
        value = value.replace(',', '').strip()
        if not value:
            return 0
        try:
            value = float(value)
        except ValueError:
            return 0
    if pd.isna(value):
        return 0
    if float(value).is_integer():
        return int(value)
    return float(value)


def _first(raw, *columns):
    for column in columns:
        value = raw.get(column)
        if value not in (None, ''):
            return value
    return None


def _points_of(raw):
    return number_value(_first(raw, COL_POINTS, COL_POINTS_ALT))


def _customer_of(raw):
    customer = text_value(raw.get(COL_CUSTOMER_ID))
    return '' if customer == UNDEFINED_SENTINEL else customer


def _display_date(ticket_no):
    return ticket_no[5:7] if len(ticket_no) >= 7 else '??'


def _is_excluded_milk(raw):
    return (text_value(raw.get(COL_CAT_1)) == EXCLUDED_MILK_CODE
            and text_value(raw.get(COL_UNIT)) in EXCLUDED_MILK_UNITS)


def _has_developer(row):
    return bool(row.original_developer) and row.original_developer != NO_DEVELOPER


def _divided_categories(role):
    return PHARMACIST_DIVIDED_CATEGORIES if role == StaffRole.PHARMACIST else SALES_DIVIDED_CATEGORIES


def determine_category(raw):
    """Maps 品類一 to a category label; 05-3 items named 麥精/米精 are infant cereal."""
    code = text_value(raw.get(COL_CAT_1))
    if code == CEREAL_CODE:
        name = text_value(_first(raw, COL_ITEM_NAME, COL_ITEM_NAME_ALT))
        if any(keyword in name for keyword in CEREAL_KEYWORDS):
            return CAT_INFANT_CEREAL
    return CATEGORY_MAP.get(code, CAT_OTHER)


# --- Point Recalculation ---

def split_return_points(base):
    """
    Splits a return's point value between seller and developer. The seller
    takes the ceiling half so an odd point stays with the seller.

    Returns:
        tuple: (seller_share, developer_share)
    """
    seller = -(-base // 2)
    return seller, base - seller


def _per_unit(base, quantity):
    # Sign follows the points, never the quantity
    magnitude = abs(base) // abs(quantity or 1)
    return -magnitude if base < 0 else magnitude


def recalculate_points(row, role=StaffRole.SALES):
    """
    Derives a stage-1 row's points from its inputs. This is the only place
    points are computed; every edit goes through it again.
    """
    if row.manual_points is not None:
        return row.manual_points
    if row.status == Stage1Status.DELETE:
        return 0

    natural_category = determine_category(row.raw) if row.raw else row.category
    if CAT_PEDIATRIC_CASH in (row.category, natural_category):
        return 0

    base = row.original_points
    if row.status == Stage1Status.RETURN:
        if natural_category in _divided_categories(role):
            base = _per_unit(base, row.quantity)
        if _has_developer(row):
            return split_return_points(base)[0]
        return base

    if role == StaffRole.PHARMACIST:
        if row.category == CAT_DISPENSING:
            return base
        if row.category == CAT_ADULT_FORMULA:
            base = base // (row.quantity or 1)
    elif row.category in SALES_DIVIDED_CATEGORIES:
        base = base // (row.quantity or 1)

    if row.status == Stage1Status.REPURCHASE and base > 0:
        return base // 2
    return base


EDITABLE_FIELDS = ('status', 'original_developer', 'repurchase_type', 'return_target', 'manual_points')


def update_row(row, role, **changes):
    """
    Applies a user edit to a stage-1 row and recomputes its points.

    Args:
        row (Stage1Row): the row to change in place.
        role (StaffRole): role of the person whose sheet holds the row.
        **changes: any of EDITABLE_FIELDS. ``manual_points=None`` clears the override.

    Returns:
        Stage1Row: the same row.
    """
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise BonusError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

    if 'status' in changes:
        try:
            status = Stage1Status(changes['status'])
        except ValueError:
            raise BonusError(f"Unknown status '{changes['status']}'.")
        is_return_row = row.quantity < 0
        if status == Stage1Status.RETURN and not is_return_row:
            raise BonusError('Only negative-quantity rows can be marked as returns.')
        if is_return_row and status not in (Stage1Status.RETURN, Stage1Status.DELETE):
            raise BonusError('A return row can only be kept as a return or deleted.')
        row.status = status

    if 'original_developer' in changes:
        row.original_developer = changes['original_developer'] or None
    if 'repurchase_type' in changes:
        row.repurchase_type = changes['repurchase_type'] or None
    if 'return_target' in changes:
        row.return_target = changes['return_target'] or None
        if row.status == Stage1Status.RETURN:
            row.category = CAT_RETURN if row.return_target else (row.product_category or row.category)
    if 'manual_points' in changes:
        manual = changes['manual_points']
        row.manual_points = None if manual in (None, '') else number_value(manual)

    row.calculated_points = recalculate_points(row, role)
    return row


def sort_stage1(rows):
    """Orders rows by category priority, then by the two-digit display date."""
    return sorted(rows, key=lambda r: (STAGE1_SORT_ORDER.get(r.category, UNLISTED_SORT_ORDER), r.date))


# --- Stage 1: Classification ---

def _new_row(raw, category, status, points, customer_id=None):
    ticket_no = text_value(raw.get(COL_TICKET_NO))
    return Stage1Row(
        id=uuid.uuid4().hex,
        sales_person=text_value(raw.get(COL_SALES_PERSON)) or UNKNOWN_PERSON,
        date=_display_date(ticket_no),
        customer_id=_customer_of(raw) if customer_id is None else customer_id,
        customer_name=text_value(raw.get(COL_CUSTOMER_NAME)),
        item_id=text_value(raw.get(COL_ITEM_ID)),
        item_name=text_value(_first(raw, COL_ITEM_NAME, COL_ITEM_NAME_ALT)),
        quantity=number_value(raw.get(COL_QUANTITY)),
        amount=number_value(raw.get(COL_SUBTOTAL)),
        discount_ratio=text_value(raw.get(COL_DISCOUNT_RATIO)),
        original_points=points,
        calculated_points=0,
        category=category,
        status=status,
        ticket_no=ticket_no,
        full_date=text_value(raw.get(COL_SALES_DATE)) or ticket_no,
        return_target=text_value(raw.get(COL_RETURN_TARGET)) or None,
        product_category=category,
        raw=dict(raw),
    )


def _classify_sale(row, role, resolver):
    """Develop or repurchase, decided through the resolver."""
    row.calculated_points = recalculate_points(row, role)
    if row.calculated_points > 0 or row.category == CAT_PEDIATRIC_CASH:
        if resolver.is_repurchase(row.customer_id, row.item_id, row.ticket_no, row.full_date):
            row.status = Stage1Status.REPURCHASE
            row.calculated_points = recalculate_points(row, role)
    resolver.register(row.customer_id, row.item_id, row.ticket_no, row.full_date)


def _classify_sales_line(raw, resolver, dispensing_ids):
    """One store-clerk line as a stage-1 row, or None when it is not eligible."""
    quantity = number_value(raw.get(COL_QUANTITY))
    is_return = quantity < 0
    points = _points_of(raw)
    if (not _customer_of(raw)
            or number_value(_first(raw, COL_UNIT_PRICE, COL_UNIT_PRICE_ALT)) == 0
            or points == 0
            or _is_excluded_milk(raw)
            or text_value(raw.get(COL_ITEM_ID)) in dispensing_ids
            or (not is_return and number_value(raw.get(COL_DEBT)) > 0)):
        return None

    category = determine_category(raw)
    if is_return:
        row = _new_row(raw, category, Stage1Status.RETURN, points)
        if row.return_target:
            row.category = CAT_RETURN
        row.calculated_points = recalculate_points(row, StaffRole.SALES)
    else:
        row = _new_row(raw, category, Stage1Status.DEVELOP, points)
        _classify_sale(row, StaffRole.SALES, resolver)
    return row


def _classify_pharmacist_line(raw, resolver, pharm_list):
    """One pharmacist line as a stage-1 row, or None when it is not eligible."""
    quantity = number_value(raw.get(COL_QUANTITY))
    is_return = quantity < 0
    points = _points_of(raw)
    if (not is_return and number_value(raw.get(COL_DEBT)) > 0) or (points == 0 and not is_return):
        return None

    item_id = text_value(raw.get(COL_ITEM_ID))
    if text_value(raw.get(COL_CAT_1)) == PHARMACIST_FORMULA_CODE:
        category = CAT_ADULT_FORMULA
    elif item_id in pharm_list:
        category = CAT_DISPENSING if pharm_list[item_id] == CAT_DISPENSING else CAT_OTHER
    else:
        return None

    customer_id = _customer_of(raw)
    if not customer_id and category != CAT_DISPENSING and not is_return:
        return None

    if is_return:
        row = _new_row(raw, category, Stage1Status.RETURN, points, customer_id)
        if row.return_target:
            row.category = CAT_RETURN
        row.calculated_points = recalculate_points(row, StaffRole.PHARMACIST)
    else:
        row = _new_row(raw, category, Stage1Status.DEVELOP, points, customer_id)
        if category == CAT_DISPENSING or not customer_id:
            row.calculated_points = recalculate_points(row, StaffRole.PHARMACIST)
        else:
            _classify_sale(row, StaffRole.PHARMACIST, resolver)
    return row


def line_classifier(role, exclusion_list=()):
    """
    Returns ``classify(raw, resolver)`` for one role. It gives a stage-1 row,
    or None for a line the role's acceptance filters drop.
    """
    if StaffRole(role) == StaffRole.PHARMACIST:
        pharm_list = {i.item_id.strip(): i.category for i in exclusion_list}
        return lambda raw, resolver: _classify_pharmacist_line(raw, resolver, pharm_list)
    dispensing_ids = {i.item_id.strip() for i in exclusion_list if i.category == CAT_DISPENSING}
    return lambda raw, resolver: _classify_sales_line(raw, resolver, dispensing_ids)


def classify_rows(raw_rows, role, resolver, exclusion_list=()):
    """
    Classifies one person's raw rows into sorted stage-1 rows.

    Rows failing the acceptance filters are dropped silently. Accepted sales
    are registered with the resolver in input order, so a later line for the
    same customer and product is seen as a repurchase.
    """
    role = StaffRole(role)
    classify = line_classifier(role, exclusion_list)
    rows = [row for row in (classify(raw, resolver) for raw in raw_rows) if row is not None]
    logging.debug(f"Classified {len(rows)} rows as {role.value}, skipped {len(raw_rows) - len(rows)}.")
    return sort_stage1(rows)


# --- Stage 2: Rewards ---

def _stage2_sales(raw_rows, reward_rules):
    rules = {r.item_id.strip(): r for r in reward_rules}
    rows = []
    for raw in raw_rows:
        rule = rules.get(text_value(raw.get(COL_ITEM_ID)))
        if rule is None:
            continue
        customer_id = _customer_of(raw)
        quantity = number_value(raw.get(COL_QUANTITY))
        if (not customer_id
                or number_value(_first(raw, COL_UNIT_PRICE, COL_UNIT_PRICE_ALT)) == 0
                or (quantity >= 0 and number_value(raw.get(COL_DEBT)) > 0)
                or _is_excluded_milk(raw)):
            continue
        rows.append(Stage2Row(
            id=uuid.uuid4().hex,
            sales_person=text_value(raw.get(COL_SALES_PERSON)) or UNKNOWN_PERSON,
            display_date=_display_date(text_value(raw.get(COL_TICKET_NO))),
            sort_date=text_value(raw.get(COL_SALES_DATE)),
            customer_id=customer_id,
            customer_name=text_value(raw.get(COL_CUSTOMER_NAME)),
            item_id=rule.item_id,
            item_name=text_value(_first(raw, COL_ITEM_NAME, COL_ITEM_NAME_ALT)),
            quantity=quantity,
            category=rule.category,
            note=rule.note,
            reward=rule.reward,
            reward_label=rule.reward_label,
            format=rule.format,
        ))
    return sorted(rows, key=lambda r: (r.category, r.display_date))


def _stage2_pharmacist(raw_rows):
    totals = {item_id: 0 for item_id in DISPENSING_ITEMS}
    person = UNKNOWN_PERSON
    for raw in raw_rows:
        person = text_value(raw.get(COL_SALES_PERSON)) or person
        item_id = text_value(raw.get(COL_ITEM_ID))
        if item_id in totals:
            totals[item_id] += number_value(raw.get(COL_QUANTITY))

    rows = []
    for item_id, (item_name, unit_label) in DISPENSING_ITEMS.items():
        if totals[item_id] == 0:
            continue
        rows.append(Stage2Row(
            id=uuid.uuid4().hex, sales_person=person, display_date='', sort_date='',
            customer_id='', customer_name='', item_id=item_id, item_name=item_name,
            quantity=totals[item_id], category=DISPENSING_REWARD_CATEGORY, note='',
            reward=0, reward_label=unit_label, format=REWARD_FORMAT_COUNT,
        ))
    return rows


def process_stage2(raw_rows, reward_rules, role=StaffRole.SALES):
    """Reward lines for store staff; dispensing tallies for pharmacists."""
    if StaffRole(role) == StaffRole.PHARMACIST:
        return _stage2_pharmacist(raw_rows)
    return _stage2_sales(raw_rows, reward_rules)


def update_reward_row(row, is_deleted=None, custom_reward=None, clear_custom_reward=False):
    if is_deleted is not None:
        row.is_deleted = bool(is_deleted)
    if clear_custom_reward:
        row.custom_reward = None
    elif custom_reward is not None:
        row.custom_reward = number_value(custom_reward)
    return row


# --- Stage 3: Cosmetics ---

def empty_stage3_rows():
    return [Stage3Row(category_name=brand, sub_total=0) for brand in COSMETIC_DISPLAY_ORDER]


def process_stage3(raw_rows):
    """Cosmetic subtotals per person and brand, keyed on 品類二."""
    by_person = {}
    for raw in raw_rows:
        brand = COSMETIC_CODES.get(text_value(raw.get(COL_CAT_2)))
        if brand is None:
            continue
        person = text_value(raw.get(COL_SALES_PERSON)) or UNKNOWN_PERSON
        brands = by_person.setdefault(person, {})
        brands[brand] = brands.get(brand, 0) + number_value(raw.get(COL_SUBTOTAL))

    summaries = []
    for person, brands in by_person.items():
        rows = [Stage3Row(category_name=b, sub_total=brands.get(b, 0)) for b in COSMETIC_DISPLAY_ORDER]
        summaries.append(Stage3Summary(sales_person=person, rows=rows, total=sum(r.sub_total for r in rows)))
    return summaries


# --- Main Calculation Orchestrator ---

def process_sales(raw_rows, roles, exclusion_list, reward_rules, resolver, config=None):
    """
    Runs all three stages for every person in the sales report.

    Args:
        raw_rows (list): rows keyed by the sales-report headers.
        roles (dict): person name -> StaffRole. Missing names get the configured default role.
        exclusion_list (list): ExclusionItem entries.
        reward_rules (list): RewardRule entries.
        resolver (RepurchaseResolver): reset here; one batch per call.
        config (CalculationConfig): optional; defaults are used when omitted.

    Returns:
        dict: person name -> PersonSheet.
    """
    config = config or CalculationConfig()
    logging.info("=" * 60)
    logging.info(f"STARTING CLASSIFICATION: {len(raw_rows)} sales rows")

    rows_by_person = {}
    for raw in raw_rows:
        person = text_value(raw.get(COL_SALES_PERSON))
        if person:
            rows_by_person.setdefault(person, []).append(raw)

    resolved_roles = {}
    for person in rows_by_person:
        role = roles.get(person)
        if role is None:
            logging.warning(f"No role recorded for '{person}'; using {config.default_role.value}.")
            role = config.default_role
        resolved_roles[person] = StaffRole(role)

    # Repurchase state is shared by the whole batch, so lines are classified
    # in report order whoever sold them.
    resolver.reset()
    classifiers = {role: line_classifier(role, exclusion_list) for role in set(resolved_roles.values())}
    stage1_by_person = {person: [] for person in rows_by_person}
    for raw in raw_rows:
        person = text_value(raw.get(COL_SALES_PERSON))
        if not person or resolved_roles[person] == StaffRole.NO_BONUS:
            continue
        row = classifiers[resolved_roles[person]](raw, resolver)
        if row is not None:
            stage1_by_person[person].append(row)

    processed = {}
    order = sorted(rows_by_person, key=lambda p: (ROLE_PRIORITY[resolved_roles[p]], p))
    for person in order:
        role = resolved_roles[person]
        if role == StaffRole.NO_BONUS:
            logging.info(f"Skipping '{person}': no bonus role.")
            continue
        person_rows = rows_by_person[person]
        stage1 = sort_stage1(stage1_by_person[person])
        stage2 = process_stage2(person_rows, reward_rules, role)
        if role == StaffRole.PHARMACIST:
            stage3 = Stage3Summary(sales_person=person, rows=[], total=0)
        else:
            summaries = process_stage3(person_rows)
            stage3 = summaries[0] if summaries else Stage3Summary(sales_person=person, rows=empty_stage3_rows())
        processed[person] = PersonSheet(role=role, stage1=stage1, stage2=stage2, stage3=stage3)
        logging.info(f"  - {person} ({role.value}): {len(stage1)} point rows, {len(stage2)} reward rows")

    logging.info(f"CLASSIFICATION COMPLETE: {len(processed)} people")
    logging.info("=" * 60)
    return processed
