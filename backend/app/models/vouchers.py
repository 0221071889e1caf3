from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class Voucher(db.Model):
    """
    Discount code with eligibility rules.

    discount_type: percent -> discount_value is a whole percentage (0-100)
                   fixed   -> discount_value is an amount in the smallest currency unit
    start_hour/end_hour: optional local-clock window [start_hour, end_hour);
                         start_hour > end_hour wraps past midnight.
    """
    __tablename__ = "vouchers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    discount_type = db.Column(db.String(16), nullable=False)
    discount_value = db.Column(db.Integer, nullable=False)

    min_order_value = db.Column(db.Integer, nullable=True)
    for_new_user = db.Column(db.Boolean, nullable=False, default=False)

    start_hour = db.Column(db.Integer, nullable=True)
    end_hour = db.Column(db.Integer, nullable=True)

    # NULL means unlimited
    max_usage_per_user = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "title": self.title,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "min_order_value": self.min_order_value,
            "for_new_user": self.for_new_user,
            "start_hour": self.start_hour,
            "end_hour": self.end_hour,
            "max_usage_per_user": self.max_usage_per_user,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class SavedVoucher(db.Model):
    """A voucher a customer saved to their wallet."""
    __tablename__ = "saved_vouchers"
    __table_args__ = (
        db.UniqueConstraint("user_id", "voucher_id", name="uq_saved_vouchers_user_voucher"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    voucher_id = db.Column(db.Integer, db.ForeignKey("vouchers.id", ondelete="CASCADE"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    voucher = db.relationship("Voucher")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "voucher": self.voucher.to_dict() if self.voucher else None,
            "created_at": to_utc_z(self.created_at),
        }
