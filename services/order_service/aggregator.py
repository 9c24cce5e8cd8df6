"""
Prices a cart against the live catalog.

All arithmetic is done on integer cents so that, for example,
10 + 20 + 30 cents is exactly 60 and never 0.6000000000000001.
"""
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.errors import NotFoundError
from shared.money import line_subtotal, total_of
from services.cart_service.models import CartLine
from services.catalog_service.models import Product


@dataclass(frozen=True)
class PricedLine:
    item_id: int
    product_id: int
    product_name: str
    attributes: str
    quantity: int
    unit_price: int

    @property
    def line_subtotal(self) -> int:
        return line_subtotal(self.quantity, self.unit_price)


@dataclass(frozen=True)
class AggregatedCart:
    cart_id: str
    lines: tuple[PricedLine, ...]
    total: int

    @property
    def is_empty(self) -> bool:
        return not self.lines


class CartAggregator:
    @staticmethod
    async def aggregate(db: AsyncSession, cart_id: str) -> AggregatedCart:
        """Read-only: lines in insertion order, each at its current discounted price."""
        result = await db.execute(
            select(CartLine, Product)
            .outerjoin(Product, Product.id == CartLine.product_id)
            .where(CartLine.cart_id == cart_id)
            .order_by(CartLine.item_id)
        )

        lines = []
        for cart_line, product in result.all():
            if product is None:
                raise NotFoundError(
                    f"Product {cart_line.product_id} in cart {cart_id} no longer exists",
                    code="PRODUCT_NOT_FOUND",
                    field="product_id",
                )
            lines.append(
                PricedLine(
                    item_id=cart_line.item_id,
                    product_id=cart_line.product_id,
                    product_name=product.name,
                    attributes=cart_line.attributes,
                    quantity=cart_line.quantity,
                    unit_price=product.effective_price,
                )
            )

        return AggregatedCart(
            cart_id=cart_id,
            lines=tuple(lines),
            total=total_of(line.line_subtotal for line in lines),
        )
