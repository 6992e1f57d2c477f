from sqlalchemy import Column, String, Text, DateTime
from models.base import Base, BigIntPK, utcnow


class SkuMaster(Base):
    """Master catalog of sellable SKU keys matched against inspected devices."""
    __tablename__ = "sku_master"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    sku_code = Column(String(200), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    brand = Column(String(100), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
