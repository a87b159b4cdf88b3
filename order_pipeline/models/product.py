from sqlalchemy import Column, Integer, Numeric, String

from order_pipeline.config.database import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    cost = Column(Numeric(10, 2), nullable=False)
    sku = Column(String(64), nullable=False, unique=True)
