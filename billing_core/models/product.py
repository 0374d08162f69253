from sqlalchemy import func, text
from billing_core.extensions import db

PAYMENT_TYPE_SUBSCRIPTION = "subscription"
DELIVERY_MEMBER_AREA = "member_area"

class Product(db.Model):
    """Catalog row owned by the product editor; read-only for the lifecycle."""
    __tablename__ = "products"

    id = db.Column(db.String(64), primary_key=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)  # seller
    name = db.Column(db.String(255), nullable=False)
    payment_type = db.Column(db.String(32), nullable=False, server_default=text("'one_time'"))
    delivery_method = db.Column(db.String(32), nullable=True)
    image_url = db.Column(db.String(1024), nullable=True)
    price = db.Column(db.Numeric(12, 2), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def is_subscription(self) -> bool:
        return self.payment_type == PAYMENT_TYPE_SUBSCRIPTION

    @property
    def has_member_area(self) -> bool:
        return self.delivery_method == DELIVERY_MEMBER_AREA

    def display_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "image_url": self.image_url,
            "price": float(self.price) if self.price is not None else None,
        }

    def __repr__(self) -> str:
        return f"<Product id={self.id} payment_type={self.payment_type!r} delivery_method={self.delivery_method!r}>"
