# ridehail/core/dispatch/__init__.py
"""
Поиск водителей и рассылка заявок.
"""
