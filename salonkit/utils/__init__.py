"""
Shared utilities.
"""

from .retry import RetryPolicy

__all__ = ["RetryPolicy"]
