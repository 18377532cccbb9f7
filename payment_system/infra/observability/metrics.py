from prometheus_client import Counter


# Define Prometheus metrics
payment_volume_total = Counter("payment_volume_total", "Total payment volume processed", ["currency", "status"])

webhook_events_total = Counter("webhook_events_total", "Gateway webhook events received", ["event", "outcome"])

escrow_releases_total = Counter("escrow_releases_total", "Escrow release attempts", ["trigger", "outcome"])

payout_volume_total = Counter("payout_volume_total", "Total escrow volume released to sellers", ["currency"])

refunds_total = Counter("refunds_total", "Refunds issued from escrow", ["source", "outcome"])

checkout_sessions_total = Counter("checkout_sessions_total", "Checkout sessions opened", ["outcome"])
