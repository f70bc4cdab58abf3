# ==============================================================================
# storebonus/calculator/grouping.py
# ------------------------------------------------------------------------------
# Product groups: item codes that count as the same product for repurchase
# checks. The index is an explicit object; build it, refresh it after groups
# change, and hand it to the resolver.
# ==============================================================================

import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from storebonus import db
from storebonus.errors import PersistenceError, ProductGroupConflictError
from storebonus.models import ProductGroup, ProductGroupItem


def normalize_item_id(item_id):
    """Trims whitespace and strips every leading zero: ' 00123 ' -> '123'."""
    if item_id is None:
        return ''
    return str(item_id).strip().lstrip('0')


@dataclass(frozen=True)
class GroupLookup:
    related_ids: frozenset
    alias_for: dict = field(default_factory=dict)
    group_name: str = ''


class ProductGroupIndex:
    """
    In-memory snapshot mapping a normalized item ID to its group and alias.
    Lookups never touch the database.
    """

    def __init__(self, groups=None):
        self._entries = {}
        self._members = {}
        if groups is not None:
            self.refresh(groups)

    @classmethod
    def from_db(cls):
        index = cls()
        index.refresh()
        return index

    def refresh(self, groups=None):
        """
        Rebuilds the snapshot.

        Args:
            groups: iterable of (group_name, [(item_id, alias), ...]). When
                omitted, the groups are read from the database.
        """
        if groups is None:
            groups = _load_group_tuples()

        entries, members = {}, {}
        for group_name, items in groups:
            for item_id, alias in items:
                key = normalize_item_id(item_id)
                if not key:
                    continue
                previous = entries.get(key)
                if previous and previous[0] != group_name:
                    # Saving through save_group prevents this; older data may still carry it.
                    logging.warning(f"Item '{key}' is listed in groups '{previous[0]}' and '{group_name}'; "
                                    f"using '{group_name}'.")
                    members[previous[0]].discard(key)
                entries[key] = (group_name, alias or '')
                members.setdefault(group_name, set()).add(key)

        self._entries = entries
        self._members = members
        logging.info(f"Product group index rebuilt: {len(members)} groups, {len(entries)} items.")

    def lookup(self, item_id):
        key = normalize_item_id(item_id)
        entry = self._entries.get(key)
        if entry is None:
            return GroupLookup(related_ids=frozenset({key}), alias_for={key: ''})
        group_name = entry[0]
        related = frozenset(self._members[group_name])
        return GroupLookup(
            related_ids=related,
            alias_for={k: self._entries[k][1] for k in related},
            group_name=group_name,
        )


def _load_group_tuples():
    try:
        groups = ProductGroup.query.order_by(ProductGroup.id).all()
    except SQLAlchemyError as e:
        logging.error(f"Could not read product groups: {e}", exc_info=True)
        raise PersistenceError('Could not read product groups.') from e
    return [(g.group_name, [(i.item_id, i.alias) for i in g.items]) for g in groups]


# --- Group maintenance ---

def list_groups():
    return ProductGroup.query.order_by(ProductGroup.group_name).all()


def _check_conflicts(group_name, items, exclude_group_id=None):
    """Raises ProductGroupConflictError when an item already sits in another group."""
    wanted = {normalize_item_id(item_id) for item_id, _ in items}
    wanted.discard('')
    query = ProductGroupItem.query.join(ProductGroup)
    if exclude_group_id is not None:
        query = query.filter(ProductGroup.id != exclude_group_id)
    for other in query.all():
        if normalize_item_id(other.item_id) in wanted and other.group.group_name != group_name:
            raise ProductGroupConflictError(other.item_id, other.group.group_name)


def save_group(group_name, items, group_id=None):
    """
    Creates or replaces a product group.

    Args:
        group_name (str): display name, unique.
        items (list): (item_id, alias) pairs; blank IDs are dropped.
        group_id (int): ID of the group being edited, if any.

    Returns:
        ProductGroup: the saved group.
    """
    group_name = group_name.strip()
    items = [(str(i).strip(), str(a or '').strip()) for i, a in items if str(i or '').strip()]
    _check_conflicts(group_name, items, exclude_group_id=group_id)

    try:
        group = db.session.get(ProductGroup, group_id) if group_id else None
        if group is None:
            group = ProductGroup.query.filter_by(group_name=group_name).first() or ProductGroup(group_name=group_name)
            db.session.add(group)
        group.group_name = group_name
        group.items = [ProductGroupItem(item_id=i, alias=a) for i, a in items]
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logging.error(f"Saving product group '{group_name}' failed: {e}", exc_info=True)
        raise PersistenceError(f"Could not save product group '{group_name}'.") from e
    return group


def delete_group(group_id):
    try:
        group = db.session.get(ProductGroup, group_id)
        if group is not None:
            db.session.delete(group)
            db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceError('Could not delete product group.') from e


def import_group_rows(rows):
    """
    Merges spreadsheet rows (群組名稱, 品項編號, 簡稱) into the stored groups.
    Existing groups keep their items; an item already present gets the new alias.

    Returns:
        int: number of distinct (group, item) pairs read from the rows.
    """
    incoming = {}
    for row in rows:
        group_name = str(row.get('群組名稱') or row.get('Group Name') or '').strip()
        item_id = str(row.get('品項編號') or row.get('Item ID') or '').strip()
        alias = str(row.get('簡稱') or row.get('Alias') or '').strip()
        if not (group_name and item_id and alias):
            continue
        bucket = incoming.setdefault(group_name, {})
        bucket.setdefault(item_id, alias)

    count = 0
    for group_name, items in incoming.items():
        existing = ProductGroup.query.filter_by(group_name=group_name).first()
        merged = {}
        if existing:
            merged = {i.item_id: i.alias for i in existing.items}
        merged.update(items)
        save_group(group_name, list(merged.items()), group_id=existing.id if existing else None)
        count += len(items)
    logging.info(f"Imported {count} product group entries into {len(incoming)} groups.")
    return count
