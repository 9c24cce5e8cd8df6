from prometheus_client import Counter, Histogram

# Business Metrics
ecomm_checkout_total = Counter(
    "ecomm_checkout_total",
    "Total checkouts processed",
    ["status"] # Labels: 'committed', 'rolled_back', 'rejected'
)

ecomm_checkout_duration_seconds = Histogram(
    "ecomm_checkout_duration_seconds",
    "Checkout duration in seconds"
)

ecomm_payment_capture_total = Counter(
    "ecomm_payment_capture_total",
    "Total payment capture attempts",
    ["outcome"] # Labels: 'succeeded', 'failed', 'already_captured', 'unrecorded'
)

ecomm_cart_mutations_total = Counter(
    "ecomm_cart_mutations_total",
    "Total cart mutations",
    ["operation"] # Labels: 'add', 'update', 'remove', 'clear'
)
