from sqlalchemy import Column, Integer, String
from shared.config.database import Base


class Product(Base):
    """
    Catalog row, owned by the catalog service; checkout only reads it.
    Prices are integer cents. discounted_price == 0 means "no discount".
    """

    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(String(1000), nullable=False, default="")
    price = Column(Integer, nullable=False)
    discounted_price = Column(Integer, nullable=False, default=0)

    @property
    def effective_price(self) -> int:
        return self.discounted_price or self.price
