"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY


def _counter(name, documentation, labelnames=()):
    # Reuse the registered collector when the module is imported twice (tests, reloads)
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


# Checkout metrics
checkout_sessions_counter = _counter(
    'storefront_checkout_sessions_total',
    'Total number of hosted checkout session builds',
    ['status']
)

# Webhook metrics
webhook_events_counter = _counter(
    'storefront_webhook_events_total',
    'Total number of inbound payment webhook deliveries',
    ['state']
)

# Order metrics
order_transitions_counter = _counter(
    'storefront_order_transitions_total',
    'Total number of order payment transitions',
    ['outcome']
)

side_effect_failures_counter = _counter(
    'storefront_side_effect_failures_total',
    'Total number of failed post-payment side effects',
    ['effect']
)

# Reconciliation metrics
reconciliation_links_counter = _counter(
    'storefront_reconciliation_links_total',
    'Total number of invoice records linked to orders',
    ['method']
)
