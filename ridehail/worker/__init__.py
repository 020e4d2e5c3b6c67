# ridehail/worker/__init__.py
"""
Периодические фоновые воркеры.
"""

from ridehail.worker.base import PeriodicWorker
from ridehail.worker.sweepers import ConnectionSweepWorker, LocationPurgeWorker, RequestExpiryWorker

__all__ = ["PeriodicWorker", "ConnectionSweepWorker", "LocationPurgeWorker", "RequestExpiryWorker"]
