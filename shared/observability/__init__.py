from .setup import setup_observability
from .metrics import (
    ecomm_checkout_total,
    ecomm_checkout_duration_seconds,
    ecomm_payment_capture_total,
    ecomm_cart_mutations_total
)
