"""Customers domain - identity by phone, registration data and billing preferences"""

from .router import router

__all__ = ["router"]
