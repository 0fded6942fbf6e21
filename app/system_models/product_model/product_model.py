# app/system_models/product_model/product_model.py
from sqlalchemy import Column, Integer, String, Boolean, Numeric, DateTime
from app.database.connection import Base
from app.helpers.time import utcnow

class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    sku = Column(String, unique=True, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    prescription_required = Column(Boolean, default=False, nullable=False, index=True)

    stock_quantity = Column(Integer, default=0, nullable=False)
    stock_reserved = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def available_stock(self) -> int:
        return (self.stock_quantity or 0) - (self.stock_reserved or 0)

    def __repr__(self):
        return f"<Product {self.id}: {self.name}>"
