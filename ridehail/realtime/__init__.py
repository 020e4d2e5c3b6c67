# ridehail/realtime/__init__.py
"""
Реальное время: события, реестр подключений, уведомления.
"""
