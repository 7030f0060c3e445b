from __future__ import annotations

from ..extensions import db
from campus_cart.time_utils import to_utc_z


ITEM_ACTIVE = "active"
ITEM_RESERVED = "reserved"
ITEM_SOLD = "sold"
ITEM_DELETED = "deleted"
ITEM_STATUSES = (ITEM_ACTIVE, ITEM_RESERVED, ITEM_SOLD, ITEM_DELETED)

ITEM_CONDITIONS = ("new", "like_new", "good", "fair", "poor")


class Item(db.Model):
    """
    A listed good with a sale-lifecycle status.

    LIFECYCLE:
        active -> reserved (offer accepted)
        reserved -> sold (transaction completed)
        reserved -> active (transaction canceled)
        any -> deleted (owner/admin soft delete, terminal)

    The status column is written only inside a unit of work that holds the
    row lock (see services.concurrency).
    """
    __tablename__ = "items"
    __table_args__ = (
        db.Index("ix_items_seller_status", "seller_id", "status"),
        db.CheckConstraint("price_cents >= 0", name="ck_items_price_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Identity comes from the auth gateway; users live elsewhere
    seller_id = db.Column(db.Integer, nullable=False, index=True)

    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    condition = db.Column(db.String(16), nullable=False, default="good")

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False)
    is_negotiable = db.Column(db.Boolean, nullable=False, default=True)
    category_id = db.Column(db.Integer, nullable=True, index=True)

    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=ITEM_ACTIVE, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "title": self.title,
            "description": self.description,
            "condition": self.condition,
            "price_cents": self.price_cents,
            "is_negotiable": self.is_negotiable,
            "category_id": self.category_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
            "version_id": self.version_id,
        }
