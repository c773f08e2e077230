"""
HTTP layer for the contact intelligence feature.
"""

from .router import router as contacts_router

__all__ = ["contacts_router"]
