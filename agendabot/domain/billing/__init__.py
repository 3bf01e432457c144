"""
Billing domain - invoice generation for completed appointments and
reconciliation of Asaas payment events.
"""

from .router import router

__all__ = ["router"]
