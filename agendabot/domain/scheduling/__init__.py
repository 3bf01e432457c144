"""
Scheduling domain - weekly availability, slot computation against the live
calendar, and appointment lifecycle (book, reschedule, cancel, complete).
"""

from .router import router

__all__ = ["router"]
