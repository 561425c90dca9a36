"""
salonkit - booking availability and checkout orchestration for a salon storefront.
"""

__version__ = "0.1.0"
