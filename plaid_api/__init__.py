"""
Plaid API

Request-handling backend built around a process lifecycle core: graceful
shutdown orchestration and configuration-keyed resource caches.
"""

__version__ = "1.0.0"
