from __future__ import annotations

from ..extensions import db
from stockpos.time_utils import to_utc_z, utcnow


class Sale(db.Model):
    """
    Committed checkout. Append-only: never updated or deleted.

    total_cents always equals the sum of its lines' line_total_cents.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.CheckConstraint("total_cents >= 0", name="ck_sales_total_nonnegative"),
        db.Index("ix_sales_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Opaque id from the identity provider
    user_id = db.Column(db.String(64), nullable=False, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    total_cents = db.Column(db.Integer, nullable=False)

    lines = db.relationship(
        "SaleLine",
        back_populates="sale",
        order_by="SaleLine.id",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Sale id={self.id} user_id={self.user_id!r} total_cents={self.total_cents}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "total_cents": self.total_cents,
            "item_count": sum(line.quantity for line in self.lines),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """Line item of a sale; unit price is frozen at commit time."""
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_lines_quantity_positive"),
        db.Index("ix_sale_lines_product", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", back_populates="lines")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }
