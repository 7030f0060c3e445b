from __future__ import annotations

from ..extensions import db
from campus_cart.time_utils import to_utc_z


TX_PENDING = "pending"
TX_COMPLETED = "completed"
TX_CANCELED = "canceled"
TX_STATUSES = (TX_PENDING, TX_COMPLETED, TX_CANCELED)


class Transaction(db.Model):
    """
    Settlement record created when an offer is accepted.

    An item has at most one live (non-canceled) transaction. A canceled row is
    revived by the next accept instead of inserting a new one, so rows per item
    stay bounded. agreed_price_cents is copied from the accepted offer and only
    changes on revival.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index(
            "uq_transactions_item_live",
            "item_id",
            unique=True,
            sqlite_where=db.text("status <> 'canceled'"),
            postgresql_where=db.text("status <> 'canceled'"),
        ),
        db.Index("ix_transactions_seller_status", "seller_id", "status"),
        db.Index("ix_transactions_buyer_status", "buyer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    offer_id = db.Column(db.Integer, db.ForeignKey("offers.id"), nullable=True)

    seller_id = db.Column(db.Integer, nullable=False)
    buyer_id = db.Column(db.Integer, nullable=False)
    agreed_price_cents = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=TX_PENDING, index=True)

    # Hand-off details, set on completion
    met_at = db.Column(db.DateTime(timezone=True), nullable=True)
    location_note = db.Column(db.String(255), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    canceled_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)

    item = db.relationship("Item", backref=db.backref("transactions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_live(self) -> bool:
        return self.status != TX_CANCELED

    def is_party(self, user_id: int) -> bool:
        return user_id in (self.seller_id, self.buyer_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "offer_id": self.offer_id,
            "seller_id": self.seller_id,
            "buyer_id": self.buyer_id,
            "agreed_price_cents": self.agreed_price_cents,
            "status": self.status,
            "met_at": to_utc_z(self.met_at) if self.met_at else None,
            "location_note": self.location_note,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "canceled_at": to_utc_z(self.canceled_at) if self.canceled_at else None,
            "canceled_by_user_id": self.canceled_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
