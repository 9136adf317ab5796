"""
Celery application for the fuel-ledger roll-up jobs.

Usage
-----
* **Worker**: ``celery -A fuel_ledger.core.celery_app worker -Q rollup --loglevel=info``
* **Beat**:   ``celery -A fuel_ledger.core.celery_app beat --loglevel=info``

Beat runs two nightly jobs for the previous day: rebuild every unit
consumption summary, then draft the daily variance report. Both are safe to
re-run; summaries are recomputed from the transactions and a second report
simply gets the next ``VRP-`` number.

Environment:

    CELERY_BROKER_URL      (default: redis://localhost:6379/0)
    CELERY_RESULT_BACKEND  (default: same as broker)
    APP_TIMEZONE           (default: Asia/Jakarta)
    ROLLUP_HOUR            (default: 1, local hour the nightly jobs start)
"""

from __future__ import annotations

import os
from datetime import timedelta

from celery import Celery
from celery.schedules import crontab
from kombu import Exchange, Queue

BROKER_URL: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
RESULT_BACKEND: str = os.getenv("CELERY_RESULT_BACKEND", BROKER_URL)
TIMEZONE: str = os.getenv("APP_TIMEZONE", "Asia/Jakarta")
ROLLUP_HOUR: int = int(os.getenv("ROLLUP_HOUR", "1"))

TASK_MODULES = ["fuel_ledger.services.rollup_tasks"]

celery_app = Celery("fuel_ledger", broker=BROKER_URL, backend=RESULT_BACKEND, include=TASK_MODULES)

rollup_queue = Queue("rollup", Exchange("rollup"), routing_key="rollup")

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    # a rebuild killed mid-way is re-delivered; it recomputes from scratch
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    timezone=TIMEZONE,
    enable_utc=True,
    task_queues=(rollup_queue,),
    task_default_queue=rollup_queue.name,
    task_routes={"rollup.*": {"queue": rollup_queue.name, "routing_key": rollup_queue.routing_key}},
    result_expires=timedelta(days=1),
    beat_schedule={
        "nightly-unit-summaries": {
            "task": "rollup.unit_summaries",
            "schedule": crontab(hour=ROLLUP_HOUR, minute=0),
        },
        "nightly-variance-report": {
            "task": "rollup.variance_report",
            "schedule": crontab(hour=ROLLUP_HOUR, minute=30),
            "kwargs": {"report_type": "Daily"},
        },
    },
)


def init_celery() -> None:
    """Register the roll-up tasks in the API process so ``.delay`` finds them."""
    from importlib import import_module

    for module in TASK_MODULES:
        import_module(module)
