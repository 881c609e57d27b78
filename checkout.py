"""
Guest checkout: validate the contact form, turn the cart into an order
submission and send it to the orders endpoint.
"""
import logging
from typing import Dict, Optional

import requests

from cart import CartStore
from schemas import is_valid_phone

logger = logging.getLogger(__name__)

SAVE_FAILED_MESSAGE = "Failed to save the order. Please try again."


class CheckoutError(Exception):
    """The order could not be submitted; the cart is left untouched."""


class CheckoutValidationError(CheckoutError):
    def __init__(self, errors: Dict[str, str]):
        super().__init__("Please correct the highlighted fields")
        self.errors = errors


class EmptyCartError(CheckoutError):
    pass


def validate_customer(form: dict) -> Dict[str, str]:
    """Return field -> message for every invalid field; empty when the form is valid."""
    errors = {}
    name = (form.get("name") or "").strip()
    city = (form.get("city") or "").strip()
    phone = (form.get("phone") or "").strip()

    if not name:
        errors["name"] = "Name is required"
    elif len(name) < 2:
        errors["name"] = "Name must be at least 2 characters"

    if not city:
        errors["city"] = "City is required"

    if not phone:
        errors["phone"] = "Phone number is required"
    elif not is_valid_phone(phone):
        errors["phone"] = "Phone number must be 10 digits starting with 06 or 07"

    return errors


def build_order_payload(cart: CartStore, form: dict) -> dict:
    items = [
        {
            "productId": line.product_id,
            "name": line.product.get("name", ""),
            "price": line.price,
            "quantity": line.quantity,
            "total": line.line_total,
        }
        for line in cart.lines
    ]
    totals = cart.totals()
    return {
        "customer": {
            "name": form["name"].strip(),
            "city": form["city"].strip(),
            "phone": form["phone"].strip(),
        },
        "items": items,
        "totalAmount": totals.total_price,
        "totalItems": totals.total_items,
    }


class OrderClient:
    """Posts orders to the store API with a requests-compatible session."""

    def __init__(self, base_url: str = "", session: Optional[requests.Session] = None, timeout: float = 15):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def create_order(self, payload: dict) -> dict:
        try:
            response = self.session.post(f"{self.base_url}/api/orders", json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.error("Order submission failed: %s", exc)
            raise CheckoutError(SAVE_FAILED_MESSAGE) from exc
        if response.status_code != 201:
            try:
                detail = response.json().get("detail")
            except ValueError:
                detail = None
            logger.error("Order submission rejected (%s): %s", response.status_code, detail)
            raise CheckoutError(detail if isinstance(detail, str) and response.status_code == 400 else SAVE_FAILED_MESSAGE)
        return response.json()


def submit_checkout(cart: CartStore, form: dict, client: OrderClient) -> str:
    """
    Validate, submit and clear the cart. Returns the allocated orderId.

    Nothing is retried: a failure leaves the cart as it was so the customer
    can submit again.
    """
    if cart.is_empty:
        raise EmptyCartError("Your cart is empty")
    errors = validate_customer(form)
    if errors:
        raise CheckoutValidationError(errors)

    result = client.create_order(build_order_payload(cart, form))
    cart.clear()
    return result["orderId"]
