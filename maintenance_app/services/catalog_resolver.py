"""
Catalog Reference Resolver.

Read-only view of the external device catalog. The maintenance-period core
asks two questions of it: "does this item exist (and is it active)?" when
assigning work, and "what does this item look like?" when listing a
collaborator's devices. Dangling references are tolerated at read time.
"""

import logging

from maintenance_app.core.exceptions import NotFoundError
from maintenance_app.models import db
from maintenance_app.models.catalog import CatalogItem

logger = logging.getLogger(__name__)

DESCRIPTIVE_FIELDS = ("id", "type", "location", "identifier", "building", "level", "is_active")


def resolve(catalog_item_id: int) -> CatalogItem:
    """Return the catalog item or raise NotFoundError.

    Inactive items are treated as unresolvable for new work.
    """
    item = db.session.get(CatalogItem, catalog_item_id)
    if item is None or not item.is_active:
        raise NotFoundError(resource="CatalogItem", resource_id=catalog_item_id)
    return item


def existing_ids(catalog_item_ids) -> set[int]:
    """Subset of ``catalog_item_ids`` that still exist in the catalog."""
    ids = {int(i) for i in catalog_item_ids}
    if not ids:
        return set()
    rows = db.session.query(CatalogItem.id).filter(CatalogItem.id.in_(ids)).all()
    return {row[0] for row in rows}


def describe_many(catalog_item_ids) -> dict[int, dict | None]:
    """Map item id → descriptive fields, or None for a dangling reference."""
    ids = {int(i) for i in catalog_item_ids}
    if not ids:
        return {}
    items = CatalogItem.query.filter(CatalogItem.id.in_(ids)).all()
    found = {item.id: {f: getattr(item, f) for f in DESCRIPTIVE_FIELDS} for item in items}
    missing = ids - found.keys()
    if missing:
        logger.debug("Dangling catalog references at read time: %s", sorted(missing))
    return {i: found.get(i) for i in ids}
