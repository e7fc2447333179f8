"""Shopping cart: the customer's selection that converts to an Order at checkout.

Carts belong to the storefront collaborator; checkout reads the lines and
clears them once the order is placed.
"""

from protean.exceptions import ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer, String

from shared.db import utcnow
from shared.domain import orderstream


@orderstream.entity(part_of="Cart")
class CartItem:
    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)


@orderstream.aggregate
class Cart:
    customer_id = String(required=True, max_length=50, unique=True)
    items = HasMany(CartItem)
    created_at = DateTime(default=utcnow)
    updated_at = DateTime(default=utcnow)

    @property
    def is_empty(self) -> bool:
        return not self.items

    def add_item(self, product_id: str, quantity: int) -> CartItem:
        """Add a product, or increase its quantity if already in the cart."""
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be a positive whole number"]})

        product_id = str(product_id)
        self.updated_at = utcnow()
        for item in self.items:
            if str(item.product_id) == product_id:
                item.quantity += quantity
                return item

        item = CartItem(product_id=product_id, quantity=quantity)
        self.add_items(item)
        return item

    def lines(self) -> list[tuple[str, int]]:
        return [(str(item.product_id), item.quantity) for item in self.items]

    def clear(self) -> list[tuple[str, int]]:
        """Remove every line from the cart, returning what was removed."""
        removed = self.lines()
        if self.items:
            self.remove_items(list(self.items))
        self.updated_at = utcnow()
        return removed

    def restore(self, lines: list[tuple[str, int]]) -> None:
        for product_id, quantity in lines:
            self.add_item(product_id, quantity)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "customer_id": self.customer_id,
            "items": [{"product_id": str(i.product_id), "quantity": i.quantity} for i in self.items],
        }


@orderstream.repository(part_of=Cart)
class CartRepository:
    def for_customer(self, customer_id: str) -> Cart | None:
        return self._dao.query.filter(customer_id=customer_id).all().first

    def get_or_create(self, customer_id: str) -> Cart:
        cart = self.for_customer(customer_id)
        if cart is None:
            cart = Cart(customer_id=customer_id)
            self.add(cart)
        return cart
