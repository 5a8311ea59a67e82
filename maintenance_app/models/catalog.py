"""
Maintenance Period Platform
Device catalog model.

The catalog is owned by an external collaborator (catalog CRUD screens are
out of scope). The maintenance-period core only reads it through
``services.catalog_resolver``; items may be deleted at any time, which is
why assignments can end up with dangling references.
"""

from datetime import datetime, timezone

from maintenance_app.models import db


class CatalogItem(db.Model):
    """An inspectable/maintainable device drawn from the catalog."""

    __tablename__ = "device_catalog"
    __table_args__ = (
        db.UniqueConstraint("type", "location", "identifier", name="uq_catalog_type_location_identifier"),
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(100), nullable=False, index=True)
    location = db.Column(db.String(200), nullable=False, index=True)
    identifier = db.Column(db.String(100), nullable=False, index=True)
    building = db.Column(db.String(100), nullable=True)
    level = db.Column(db.String(50), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True,
                          comment="Deactivate without deleting")

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "location": self.location,
            "identifier": self.identifier,
            "building": self.building,
            "level": self.level,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<CatalogItem {self.id}: {self.type}/{self.identifier}>"
