# src/manuscript_pipeline/ledger/ledger_factory.py — v1
"""Factory for cost ledger instantiation."""

from __future__ import annotations

from manuscript_pipeline.config.settings import Settings
from manuscript_pipeline.ledger.base_ledger import AlertSink, BaseCostLedger


def create_cost_ledger(
    settings: Settings | None = None, alert_sink: AlertSink | None = None
) -> BaseCostLedger:
    """Instantiate the configured ledger backend.

    Args:
        settings: Application settings. Defaults to the in-memory backend.
        alert_sink: Optional async callback receiving budget alerts.

    Returns:
        Configured BaseCostLedger implementation.
    """
    backend = "memory" if settings is None else settings.ledger_backend

    if backend == "memory":
        from manuscript_pipeline.ledger.memory_ledger import MemoryCostLedger
        return MemoryCostLedger(settings=settings, alert_sink=alert_sink)

    if backend == "sqlite":
        from manuscript_pipeline.ledger.sqlite_ledger import SqliteCostLedger
        return SqliteCostLedger(
            settings.ledger_db_path, settings=settings, alert_sink=alert_sink
        )

    raise ValueError(f"Unsupported ledger backend: {backend!r}")
