# ==============================================================================
# storebonus/calculator/aggregation.py
# ------------------------------------------------------------------------------
# Per-person ledgers, reward totals and the cross-person repurchase matrix.
# Points are recomputed here rather than read from stored fields.
# ==============================================================================

import dataclasses
import re
from dataclasses import dataclass, field
from typing import Optional

from .engine import recalculate_points
from .schema import (
    DISPENSING_SELF_PAID_ID, DISPENSING_SERVICE_ID, NO_DEVELOPER, REWARD_FORMAT_COUNT,
    ROLE_PRIORITY, Stage1Status, StaffRole,
)

MISSING_STAFF_ID = '999999'


@dataclass
class LedgerLine:
    row: object
    points: int
    origin_person: str
    incoming: bool = False


@dataclass
class PersonSummary:
    person: str
    role: StaffRole
    staff_id: str = ''
    store_name: str = ''
    lines: list = field(default_factory=list)
    own_points: int = 0
    incoming_points: int = 0
    develop_points: int = 0
    return_points: int = 0
    cash_reward: float = 0
    voucher_count: int = 0
    dispensing_self_paid: int = 0
    dispensing_service: int = 0
    dispensing_bonus: float = 0
    cosmetic_rows: list = field(default_factory=list)
    cosmetic_total: float = 0
    points_standard: Optional[float] = None
    cosmetic_standard: Optional[float] = None

    @property
    def total_points(self):
        return self.own_points + self.incoming_points

    @property
    def points_gap(self):
        if self.points_standard is None:
            return None
        return self.total_points - self.points_standard

    @property
    def cosmetic_gap(self):
        if self.cosmetic_standard is None:
            return None
        return self.cosmetic_total - self.cosmetic_standard


# --- Sorting ---

def _natural_key(text):
    return tuple(int(part) if part.isdigit() else part for part in re.split(r'(\d+)', text) if part)


def staff_sort_key(name, staff=None):
    """Sorts by staff ID (numbers compared as numbers), unknown IDs last, then by name."""
    record = (staff or {}).get(name)
    staff_id = (getattr(record, 'staff_id', None) or MISSING_STAFF_ID).strip() or MISSING_STAFF_ID
    return _natural_key(staff_id), name


def sorted_people(names, processed, staff=None):
    """Role priority first, then staff_sort_key."""
    def key(name):
        sheet = processed.get(name)
        role = sheet.role if sheet else StaffRole.SALES
        return (ROLE_PRIORITY[role],) + staff_sort_key(name, staff)
    return sorted(names, key=key)


# --- Ledger ---

def _is_outgoing(row, person):
    return row.status == Stage1Status.RETURN and bool(row.return_target) and row.return_target != person


def stage2_totals(sheet):
    """
    Returns:
        dict: cash, vouchers, and the two dispensing counts for one sheet.
    """
    totals = {'cash': 0, 'vouchers': 0, 'self_paid': 0, 'service': 0}
    for row in sheet.stage2:
        if row.is_deleted:
            continue
        if row.item_id == DISPENSING_SELF_PAID_ID and row.format == REWARD_FORMAT_COUNT:
            totals['self_paid'] += row.quantity
        elif row.item_id == DISPENSING_SERVICE_ID and row.format == REWARD_FORMAT_COUNT:
            totals['service'] += row.quantity
        elif row.custom_reward is None and row.is_voucher:
            totals['vouchers'] += row.quantity
        elif row.format != REWARD_FORMAT_COUNT:
            totals['cash'] += row.cash_value()
    return totals


def summarize_person(processed, person, config, staff=None):
    """
    Builds the ledger for one person.

    Own rows exclude deletions, repurchases (credited through the matrix)
    and returns transferred to someone else. Returns targeted at this person
    from other sheets are pulled in, recomputed in the role of the sheet they
    came from.

    Args:
        processed (dict): person -> PersonSheet.
        person (str): whose ledger to build.
        config (CalculationConfig): supplies the dispensing bonus rule.
        staff (dict): name -> StaffMember, optional.
    """
    sheet = processed[person]
    record = (staff or {}).get(person)
    summary = PersonSummary(
        person=person,
        role=sheet.role,
        staff_id=getattr(record, 'staff_id', '') or '',
        store_name=getattr(record, 'branch', '') or '',
        points_standard=getattr(record, 'points_standard', None),
        cosmetic_standard=getattr(record, 'cosmetic_standard', None),
    )

    for row in sheet.stage1:
        if row.status in (Stage1Status.DELETE, Stage1Status.REPURCHASE) or _is_outgoing(row, person):
            continue
        points = recalculate_points(row, sheet.role)
        summary.lines.append(LedgerLine(row=row, points=points, origin_person=person))
        summary.own_points += points
        if row.status == Stage1Status.RETURN:
            summary.return_points += points
        else:
            summary.develop_points += points

    for origin, other in processed.items():
        if origin == person:
            continue
        for row in other.stage1:
            if row.status == Stage1Status.RETURN and row.return_target == person:
                points = recalculate_points(row, other.role)
                summary.lines.append(LedgerLine(row=row, points=points, origin_person=origin, incoming=True))
                summary.incoming_points += points
                summary.return_points += points

    totals = stage2_totals(sheet)
    summary.cash_reward = totals['cash']
    summary.voucher_count = totals['vouchers']
    summary.dispensing_self_paid = totals['self_paid']
    summary.dispensing_service = totals['service']
    if sheet.role == StaffRole.PHARMACIST:
        summary.dispensing_bonus = max(0, (summary.dispensing_self_paid - config.dispensing_threshold) * config.dispensing_rate)

    if sheet.stage3 is not None:
        summary.cosmetic_rows = list(sheet.stage3.rows)
        summary.cosmetic_total = sheet.stage3.total
    return summary


# --- Repurchase Matrix ---

@dataclass
class MatrixLine:
    row: object
    developer: str
    seller_points: int
    developer_points: int


@dataclass
class MatrixSection:
    seller: str
    lines: list = field(default_factory=list)

    @property
    def seller_total(self):
        return sum(line.seller_points for line in self.lines)

    def developer_total(self, developer):
        return sum(line.developer_points for line in self.lines if line.developer == developer)


@dataclass
class RepurchaseMatrix:
    developers: list = field(default_factory=list)
    sections: list = field(default_factory=list)

    def developer_grand_total(self, developer):
        return sum(section.developer_total(developer) for section in self.sections)


def _developer_credit(row, role):
    """Full value as if the seller had developed the sale, minus what the seller keeps."""
    if row.status == Stage1Status.RETURN:
        full = recalculate_points(dataclasses.replace(row, original_developer=None), role)
    else:
        full = recalculate_points(dataclasses.replace(row, status=Stage1Status.DEVELOP), role)
    seller = recalculate_points(row, role)
    return seller, full - seller


def build_repurchase_matrix(processed, staff=None, people=None):
    """
    Cross-tabulates, for every repurchase or developer-shared return, what
    the seller kept and what the named developer is owed.

    Args:
        processed (dict): person -> PersonSheet.
        staff (dict): name -> StaffMember, used for ordering.
        people (iterable): sellers to include; all by default.
    """
    sellers = sorted_people(people if people is not None else processed.keys(), processed, staff)
    developers = set()
    sections = []
    for seller in sellers:
        sheet = processed.get(seller)
        if sheet is None:
            continue
        section = MatrixSection(seller=seller)
        for row in sheet.stage1:
            if row.status not in (Stage1Status.REPURCHASE, Stage1Status.RETURN):
                continue
            developer = row.original_developer
            if not developer or developer == NO_DEVELOPER:
                continue
            seller_points, developer_points = _developer_credit(row, sheet.role)
            section.lines.append(MatrixLine(row=row, developer=developer,
                                            seller_points=seller_points, developer_points=developer_points))
            developers.add(developer)
        if section.lines:
            section.lines.sort(key=lambda line: line.row.date)
            sections.append(section)

    ordered = sorted(developers, key=lambda name: staff_sort_key(name, staff))
    return RepurchaseMatrix(developers=ordered, sections=sections)
