# ridehail/core/rides/__init__.py
"""
Поездки: модели, машина состояний, хранилища, оркестратор.
"""

from ridehail.core.rides.errors import OperationResult, RideError
from ridehail.core.rides.models import Location, Ride, RideRequest

__all__ = ["OperationResult", "RideError", "Location", "Ride", "RideRequest"]
