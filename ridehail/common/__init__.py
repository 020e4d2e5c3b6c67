# ridehail/common/__init__.py
"""
Общие утилиты, константы и логгер.
"""

from ridehail.common.logger import get_logger, log_info, log_error, log_warning, log_debug
from ridehail.common.constants import TypeMsg, UserRole, RideStatus

__all__ = [
    "get_logger",
    "log_info",
    "log_error",
    "log_warning",
    "log_debug",
    "TypeMsg",
    "UserRole",
    "RideStatus",
]
