"""
                Restaurant Delivery Platform

Multi-tenant restaurant ordering backend with Uber Direct delivery
dispatch, distance-based delivery fees and webhook status tracking.
"""

__version__ = "1.0.0"
