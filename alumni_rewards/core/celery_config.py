"""Celery queue topology: exchanges, queues and task routing."""

from kombu import Exchange, Queue  # type: ignore[import-untyped]

default_exchange = Exchange("default", type="direct")

CELERY_QUEUES = (
    # Ledger: evaluation triggered by domain events, user-facing latency
    Queue("ledger", default_exchange, routing_key="ledger"),
    # Maintenance: periodic sweeps, never urgent
    Queue("maintenance", default_exchange, routing_key="maintenance"),
)

CELERY_TASK_ROUTES: dict[str, dict] = {
    "tasks.evaluate_reward_action":    {"queue": "ledger"},
    "tasks.expire_reward_activities":  {"queue": "maintenance"},
}

CELERY_TASK_ANNOTATIONS: dict[str, dict] = {
    "tasks.evaluate_reward_action": {"rate_limit": "200/m"},
}
