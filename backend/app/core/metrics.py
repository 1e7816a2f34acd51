"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY


def _counter(name: str, documentation: str, labelnames=()):
    # Re-importing the module (e.g. under test reloads) must not register twice
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


checkout_sessions_counter = _counter(
    'survey_checkout_sessions_total',
    'Checkout session creation attempts for survey unlocks',
    ['status']
)

webhook_events_counter = _counter(
    'survey_webhook_events_total',
    'Stripe webhook deliveries by outcome',
    ['outcome']
)

survey_unlocks_counter = _counter(
    'survey_unlocks_total',
    'Surveys transitioned from unpaid to paid'
)

survey_responses_counter = _counter(
    'survey_responses_total',
    'Anonymous response submissions accepted'
)
