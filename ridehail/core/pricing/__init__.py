# ridehail/core/pricing/__init__.py
"""
Расчёт стоимости поездки.
"""

from ridehail.core.pricing.service import PricingService, Tariff

__all__ = ["PricingService", "Tariff"]
