# ridehail/core/__init__.py
"""
Бизнес-логика: поездки, тарифы, диспетчеризация.
"""
