"""
Checkout and the order back-office.

`OrderSubmitter` turns a cart plus the visitor's contact/delivery details into
one order row per cart line, written in a single batch insert. The rest of the
module is the order console: status changes and the order list definition.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .cart import Cart
from .errors import EmptyCartError, GatewayError, NotFoundError, SubmissionInProgressError
from .gateway import Gateway, Record, utcnow
from .listing import ListParams, ListSpec, Page, contains, equals, fetch_page
from .notifications import Notifier
from .schemas import (CHECKOUT_MESSAGES, ORDER_STATUSES, ORDERS, PHONE_PREFIX, PRODUCTS,
                      CustomerDetails, validate_fields)

logger = logging.getLogger(__name__)

ORDER_FIELDS = ("customer_name", "email", "phone", "address")


@dataclass
class CheckoutForm:
    customer_name: str = ""
    email: str = ""
    phone: str = PHONE_PREFIX
    address: str = ""
    submitting: bool = field(default=False, compare=False)

    def values(self) -> Dict[str, str]:
        return {name: getattr(self, name) for name in ORDER_FIELDS}

    def fill(self, **values: Any) -> "CheckoutForm":
        for name, value in values.items():
            if name in ORDER_FIELDS and value is not None:
                setattr(self, name, value)
        return self

    def reset(self) -> None:
        defaults = CheckoutForm()
        for name in ORDER_FIELDS:
            setattr(self, name, getattr(defaults, name))

    def validate(self) -> CustomerDetails:
        return validate_fields(CustomerDetails, self.values(), CHECKOUT_MESSAGES)


@dataclass
class SubmissionResult:
    ok: bool
    orders: List[Record] = field(default_factory=list)


def build_order_records(cart: Cart, customer: CustomerDetails,
                        user_id: Optional[str] = None) -> List[Record]:
    shared: Record = {
        **customer.model_dump(),
        "status": "Pending",
        "order_date": utcnow(),
    }
    if user_id:
        shared["user_id"] = user_id
    return [{**shared, "product_id": line.product_id, "quantity": line.quantity}
            for line in cart]


class OrderSubmitter:
    def __init__(self, gateway: Gateway, notifier: Optional[Notifier] = None):
        self.gateway = gateway
        self.notifier = notifier or Notifier()

    async def submit(self, cart: Cart, form: CheckoutForm,
                     user_id: Optional[str] = None) -> SubmissionResult:
        """
        Place one order per cart line.

        Raises ValidationError for bad fields and EmptyCartError for an empty
        cart; neither touches the gateway. A gateway failure is logged and
        reported to the visitor, and leaves the cart and form as they were so
        the visitor can resubmit.

        While one submission for `form` is waiting on the gateway, another
        raises SubmissionInProgressError.
        """
        if form.submitting:
            raise SubmissionInProgressError()
        customer = form.validate()
        if len(cart) == 0:
            error = EmptyCartError()
            self.notifier.error(str(error))
            raise error

        records = build_order_records(cart, customer, user_id)
        form.submitting = True
        try:
            inserted = await self.gateway.insert(ORDERS, records)
        except GatewayError:
            logger.exception("Error placing order for %s (%d lines)", customer.email, len(records))
            self.notifier.error("Failed to place order. Please try again.")
            return SubmissionResult(ok=False)
        finally:
            form.submitting = False

        logger.info("placed %d order rows for %s", len(inserted), customer.email)
        self.notifier.success("Order placed successfully!")
        form.reset()
        cart.clear()
        return SubmissionResult(ok=True, orders=inserted)


# -----------------------------
# Order console
# -----------------------------

def is_regression(current: str, new: str) -> bool:
    """True when `new` comes earlier than `current` in Pending -> Shipped -> Delivered."""
    if current not in ORDER_STATUSES or new not in ORDER_STATUSES:
        return False
    return ORDER_STATUSES.index(new) < ORDER_STATUSES.index(current)


async def update_status(gateway: Gateway, order_id: str, status: str,
                        notifier: Optional[Notifier] = None) -> bool:
    """
    Set an order's status. Every status can be reached from every other one;
    moving backwards is allowed and only logged. Raises NotFoundError for an
    unknown order.
    """
    notifier = notifier or Notifier()
    if status not in ORDER_STATUSES:
        raise ValueError(f"unknown order status {status!r}")
    try:
        current = await gateway.get(ORDERS, order_id)
        if is_regression(current.get("status", "Pending"), status):
            logger.warning("order %s moved back from %s to %s", order_id, current.get("status"), status)
        await gateway.update(ORDERS, {"status": status}, {"id": order_id})
    except NotFoundError:
        raise
    except GatewayError:
        logger.exception("Error updating order status for %s", order_id)
        notifier.error("Failed to update order status")
        return False
    notifier.success("Order status updated successfully")
    return True


async def _category_filter(gateway: Gateway, category: Any) -> Record:
    result = await gateway.select(PRODUCTS, {"category": category})
    return {"product_id": {"$in": [p["id"] for p in result.rows]}}


async def attach_products(gateway: Gateway, rows: List[Record]) -> List[Record]:
    ids = sorted({r["product_id"] for r in rows if r.get("product_id")})
    products: Dict[str, Record] = {}
    if ids:
        result = await gateway.select(PRODUCTS, {"id": {"$in": ids}})
        products = {p["id"]: p for p in result.rows}
    enriched = []
    for row in rows:
        p = products.get(row.get("product_id"))
        summary = {"id": p["id"], "name": p.get("name"), "price": p.get("price")} if p else None
        enriched.append({**row, "product": summary})
    return enriched


ORDER_LIST = ListSpec(
    table=ORDERS,
    label="orders",
    order_by="order_date",
    descending=True,
    search_fields=("customer_name", "email"),
    filters={
        "product_id": equals("product_id"),
        "category": _category_filter,
        "status": equals("status"),
        "order_id": contains("id"),
    },
    enrich=attach_products,
)


async def customer_orders(gateway: Gateway, user_id: str, page: int = 1,
                          page_size: Optional[int] = None) -> Page:
    """Order history of one signed-in customer."""
    params = ListParams(page=page, page_size=page_size, scope={"user_id": user_id})
    return await fetch_page(gateway, ORDER_LIST, params)
