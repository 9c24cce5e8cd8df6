import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shared.errors import NotFoundError
from shared.money import to_major_units
from shared.observability import ecomm_cart_mutations_total
from services.catalog_service.repository import CatalogRepository
from services.order_service.aggregator import AggregatedCart, CartAggregator

from .models import CartLine
from .repository import CartRepository
from .schemas import CartItemCreate, CartItemView, CartResponse

logger = structlog.get_logger(__name__)


def _item_not_found(item_id: int) -> NotFoundError:
    return NotFoundError(f"Item {item_id} not found", code="ITEM_NOT_FOUND", field="item_id")


def render_cart(cart: AggregatedCart) -> CartResponse:
    return CartResponse(
        cart_id=cart.cart_id,
        items=[
            CartItemView(
                item_id=line.item_id,
                product_id=line.product_id,
                name=line.product_name,
                attributes=line.attributes,
                quantity=line.quantity,
                price=to_major_units(line.unit_price),
                subtotal=to_major_units(line.line_subtotal),
            )
            for line in cart.lines
        ],
        total_amount=to_major_units(cart.total),
    )


class CartService:
    @staticmethod
    def generate_cart_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    async def get_cart(db: AsyncSession, cart_id: str) -> CartResponse:
        return render_cart(await CartAggregator.aggregate(db, cart_id))

    @staticmethod
    async def add_item(db: AsyncSession, cart_id: str, data: CartItemCreate) -> CartLine:
        product = await CatalogRepository.get_product_by_id(db, data.product_id)
        if product is None:
            raise NotFoundError(
                f"Product {data.product_id} not found",
                code="PRODUCT_NOT_FOUND",
                field="product_id",
            )

        item = CartLine(
            cart_id=cart_id,
            product_id=data.product_id,
            attributes=data.attributes,
            quantity=data.quantity,
        )
        item = await CartRepository.add_item(db, item)
        ecomm_cart_mutations_total.labels(operation="add").inc()
        logger.info("cart_item_added", cart_id=cart_id, item_id=item.item_id, product_id=item.product_id)
        return item

    @staticmethod
    async def update_quantity(db: AsyncSession, item_id: int, quantity: int) -> CartLine:
        item = await CartRepository.get_item(db, item_id)
        if item is None:
            raise _item_not_found(item_id)

        item = await CartRepository.update_quantity(db, item, quantity)
        ecomm_cart_mutations_total.labels(operation="update").inc()
        return item

    @staticmethod
    async def remove_item(db: AsyncSession, cart_id: str, item_id: int):
        item = await CartRepository.get_item(db, item_id)
        if item is None or item.cart_id != cart_id:
            raise _item_not_found(item_id)

        await CartRepository.remove_item(db, item)
        ecomm_cart_mutations_total.labels(operation="remove").inc()
        logger.info("cart_item_removed", cart_id=cart_id, item_id=item_id)

    @staticmethod
    async def clear_cart(db: AsyncSession, cart_id: str):
        deleted = await CartRepository.clear_cart(db, cart_id)
        if deleted == 0:
            raise NotFoundError(f"Cart {cart_id} not found", code="CART_NOT_FOUND", field="cart_id")
        ecomm_cart_mutations_total.labels(operation="clear").inc()
        logger.info("cart_cleared", cart_id=cart_id, deleted=deleted)
