"""SQLAlchemy model for imported product records."""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.types import DateTime

from power_importer.db.base import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    sku = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    product_type = Column(String(16), nullable=False, default="simple")
    parent_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), index=True)
    description = Column(Text)
    short_description = Column(Text)
    regular_price = Column(Numeric(12, 2))
    sale_price = Column(Numeric(12, 2))
    price = Column(Numeric(12, 2))
    categories = Column(JSON, nullable=False, default=list)
    tags = Column(JSON, nullable=False, default=list)
    attributes = Column(JSON, nullable=False, default=list)
    image_urls = Column(JSON, nullable=False, default=list)
    brand = Column(String(255))
    seo = Column(JSON, nullable=False, default=dict)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (Index("ix_products_sku_lower", func.lower(sku), unique=True),)
