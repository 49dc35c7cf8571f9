"""
Service module initialization
"""

from .service import LedgerService, ServiceStatus, create_service

__all__ = [
    "LedgerService",
    "ServiceStatus",
    "create_service"
]
