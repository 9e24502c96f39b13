"""
metrics.py — Prometheus exposition of service counts
====================================================
Row counts are read from the database on every scrape; the live stream
subscriber count comes straight from the event bus. Process metrics (RSS,
CPU, open fds) come from ``prometheus_client``'s ``ProcessCollector``.

Each app builds its own ``CollectorRegistry`` so test apps never share
collectors with the module-level app.
"""
from __future__ import annotations

import time
from typing import Iterator

from prometheus_client import ProcessCollector
from prometheus_client.core import GaugeMetricFamily
from prometheus_client.registry import Collector, CollectorRegistry
from sqlalchemy import func, select

from .database import db_session
from .event_bus import TenantEventBus
from .models import Board, Task, Tenant, User

_COUNTED = (
    (User, "users", "Total number of registered users."),
    (Board, "boards", "Total number of boards."),
    (Task, "tasks", "Total number of tasks."),
    (Tenant, "tenants", "Total number of tenants."),
)


class TaskboardCollector(Collector):
    def __init__(self, bus: TenantEventBus) -> None:
        self.bus = bus
        self.started = time.monotonic()

    def collect(self) -> Iterator[GaugeMetricFamily]:
        yield GaugeMetricFamily(
            "taskboard_uptime_seconds", "Seconds since the service started.",
            value=time.monotonic() - self.started,
        )
        with db_session() as session:
            counts = [
                (name, help_text, session.execute(select(func.count(model.id))).scalar_one() or 0)
                for model, name, help_text in _COUNTED
            ]
        for name, help_text, count in counts:
            yield GaugeMetricFamily(f"taskboard_{name}_total", help_text, value=count)
        yield GaugeMetricFamily(
            "taskboard_stream_subscribers", "Open real-time stream subscriptions across all tenants.",
            value=self.bus.subscriber_count(),
        )


def build_metrics_registry(bus: TenantEventBus) -> CollectorRegistry:
    registry = CollectorRegistry()
    registry.register(TaskboardCollector(bus))
    ProcessCollector(registry=registry)
    return registry
