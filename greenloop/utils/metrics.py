from prometheus_client import Counter, Histogram, Gauge

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path"],
)
IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "HTTP requests in progress",
)

POINTS_TRANSACTIONS = Counter(
    "points_transactions_total",
    "Point ledger entries written",
    ["type"],
)
POINTS_AMOUNT = Counter(
    "points_amount_total",
    "Points moved through the ledger",
    ["type"],
)
POINTS_REJECTIONS = Counter(
    "points_rejections_total",
    "Rejected point operations",
    ["reason"],
)
POINTS_EXPIRED = Counter(
    "points_expired_total",
    "Grants expired by the sweep",
)


def get_route_name(scope: dict) -> str:
    route = scope.get("route")
    if route and hasattr(route, "path"):
        return route.path
    return scope.get("path", "unknown")


def record_transaction(transaction_type: str, points_amount: int) -> None:
    POINTS_TRANSACTIONS.labels(transaction_type).inc()
    POINTS_AMOUNT.labels(transaction_type).inc(points_amount)
