from __future__ import annotations

from ..extensions import db
from campus_cart.time_utils import to_utc_z


OFFER_PENDING = "pending"
OFFER_ACCEPTED = "accepted"
OFFER_REJECTED = "rejected"
OFFER_WITHDRAWN = "withdrawn"
OFFER_EXPIRED = "expired"
OFFER_STATUSES = (OFFER_PENDING, OFFER_ACCEPTED, OFFER_REJECTED, OFFER_WITHDRAWN, OFFER_EXPIRED)


class Offer(db.Model):
    """
    A buyer's proposed price against one item.

    Only PENDING is non-terminal. A buyer holds at most one pending offer per
    item; the partial unique index backs the check made under the item lock.
    """
    __tablename__ = "offers"
    __table_args__ = (
        db.Index(
            "uq_offers_item_buyer_pending",
            "item_id",
            "buyer_id",
            unique=True,
            sqlite_where=db.text("status = 'pending'"),
            postgresql_where=db.text("status = 'pending'"),
        ),
        db.Index("ix_offers_item_status", "item_id", "status"),
        db.CheckConstraint("amount_cents >= 0", name="ck_offers_amount_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    buyer_id = db.Column(db.Integer, nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    message = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=OFFER_PENDING, index=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)

    item = db.relationship("Item", backref=db.backref("offers", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_pending(self) -> bool:
        return self.status == OFFER_PENDING

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "buyer_id": self.buyer_id,
            "amount_cents": self.amount_cents,
            "message": self.message,
            "status": self.status,
            "decided_at": to_utc_z(self.decided_at) if self.decided_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
