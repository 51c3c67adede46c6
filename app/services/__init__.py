"""
                        Services Module

Business logic services. Providers sit behind an abstract base with a
mock and a real implementation, selected from settings by each package's
factory.

Services:
    - geo: Geocoding (Nominatim / mock), geocode caching, distance fees
    - delivery: Uber Direct quotes, dispatch, token management, webhooks
"""
