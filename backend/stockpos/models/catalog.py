from __future__ import annotations

from ..extensions import db
from stockpos.time_utils import to_utc_z, utcnow


STATUS_OK = "OK"
STATUS_LOW = "LOW"
STATUS_OUT = "OUT"


def stock_status(quantity: int, min_stock: int) -> str:
    """OUT when nothing is sellable, LOW at or under the threshold, else OK."""
    if quantity <= 0:
        return STATUS_OUT
    if quantity <= min_stock:
        return STATUS_LOW
    return STATUS_OK


class Product(db.Model):
    """
    Product master data.

    Price and threshold are live catalog facts; sales capture the price
    on their own lines at commit time.

    DELETION:
    A product referenced by sale history is deactivated (is_active=False),
    never removed, so the ledger keeps a valid reference.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_nonnegative"),
        db.CheckConstraint("min_stock >= 0", name="ck_products_min_stock_nonnegative"),
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=5)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    stock = db.relationship(
        "Stock",
        back_populates="product",
        uselist=False,
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} price_cents={self.price_cents}>"

    def to_dict(self) -> dict:
        quantity = self.stock.quantity if self.stock is not None else 0
        return {
            "id": self.id,
            "name": self.name,
            "price_cents": self.price_cents,
            "min_stock": self.min_stock,
            "is_active": self.is_active,
            "stock": quantity,
            "status": stock_status(quantity, self.min_stock),
            "stock_updated_at": to_utc_z(self.stock.updated_at) if self.stock is not None else None,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Stock(db.Model):
    """
    Current sellable quantity, one row per product.

    Only two writers: admin overwrite (catalog_service.adjust_stock) and
    the checkout decrement (checkout_service.record_sale). The CHECK
    constraint is the last line against a negative quantity.
    """
    __tablename__ = "stock"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_stock_quantity_nonnegative"),
        db.Index("ix_stock_updated_at", "updated_at"),
    )

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), primary_key=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", back_populates="stock")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Stock product_id={self.product_id} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
