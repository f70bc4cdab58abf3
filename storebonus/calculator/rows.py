# ==============================================================================
# storebonus/calculator/rows.py
# ------------------------------------------------------------------------------
# Transient records produced by the calculation stages.
# ==============================================================================

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from .schema import REWARD_FORMAT_VOUCHER, Stage1Status, StaffRole


@dataclass(frozen=True)
class ExclusionItem:
    """One entry of the pharmacist point list."""
    item_id: str
    category: str


@dataclass(frozen=True)
class RewardRule:
    """Cash or voucher reward paid per unit of a given item."""
    item_id: str
    note: str = ''
    category: str = ''
    reward: float = 0
    reward_label: str = ''
    format: str = '現金'


@dataclass
class Stage1Row:
    """
    A classified sales line.

    ``calculated_points`` is a derived value. Change the inputs through
    ``engine.update_row`` so it is recomputed together with them.
    """
    id: str
    sales_person: str
    date: str
    customer_id: str
    customer_name: str
    item_id: str
    item_name: str
    quantity: int
    amount: float
    discount_ratio: str
    original_points: int
    calculated_points: int
    category: str
    status: Stage1Status
    ticket_no: str = ''
    full_date: str = ''
    original_developer: Optional[str] = None
    repurchase_type: Optional[str] = None
    return_target: Optional[str] = None
    manual_points: Optional[int] = None
    # Category assigned at classification; restored when a return target is cleared
    product_category: str = ''
    raw: dict = field(default_factory=dict)

    def to_dict(self):
        data = asdict(self)
        data['status'] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data):
        data = dict(data)
        data['status'] = Stage1Status(data['status'])
        return cls(**data)


@dataclass
class Stage2Row:
    """A reward line matched against the reward rules (or a dispensing tally)."""
    id: str
    sales_person: str
    display_date: str
    sort_date: Any
    customer_id: str
    customer_name: str
    item_id: str
    item_name: str
    quantity: int
    category: str
    note: str
    reward: float
    reward_label: str
    format: str
    custom_reward: Optional[float] = None
    is_deleted: bool = False

    @property
    def is_voucher(self):
        return self.format == REWARD_FORMAT_VOUCHER

    def cash_value(self):
        """Cash paid for this line; vouchers are counted separately."""
        if self.custom_reward is not None:
            return self.custom_reward
        return self.quantity * self.reward

    def display_value(self):
        if self.custom_reward is not None:
            return self.custom_reward
        if self.is_voucher:
            return f"{self.quantity}張"
        return self.quantity * self.reward

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        return cls(**data)


@dataclass
class Stage3Row:
    category_name: str
    sub_total: float


@dataclass
class Stage3Summary:
    """Cosmetic sales per brand for one person."""
    sales_person: str
    rows: list = field(default_factory=list)
    total: float = 0

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        rows = [Stage3Row(**r) for r in data.get('rows', [])]
        return cls(sales_person=data['sales_person'], rows=rows, total=data.get('total', 0))


@dataclass
class PersonSheet:
    """Everything calculated for one staff member in one run."""
    role: StaffRole
    stage1: list = field(default_factory=list)
    stage2: list = field(default_factory=list)
    stage3: Optional[Stage3Summary] = None

    def find_row(self, row_id):
        for row in self.stage1:
            if row.id == row_id:
                return row
        return None

    def to_dict(self):
        return {
            'role': self.role.value,
            'stage1': [r.to_dict() for r in self.stage1],
            'stage2': [r.to_dict() for r in self.stage2],
            'stage3': self.stage3.to_dict() if self.stage3 else None,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            role=StaffRole(data['role']),
            stage1=[Stage1Row.from_dict(r) for r in data.get('stage1', [])],
            stage2=[Stage2Row.from_dict(r) for r in data.get('stage2', [])],
            stage3=Stage3Summary.from_dict(data['stage3']) if data.get('stage3') else None,
        )
