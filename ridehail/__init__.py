# ridehail/__init__.py
"""
Ядро жизненного цикла поездки и диспетчеризации водителей.
"""

__version__ = "1.0.0"
