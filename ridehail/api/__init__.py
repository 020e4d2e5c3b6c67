# ridehail/api/__init__.py
"""
HTTP API и WebSocket шлюз.
"""
