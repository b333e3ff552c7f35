"""
API routes and endpoints.
"""

from . import callback, health

__all__ = ["callback", "health"]
