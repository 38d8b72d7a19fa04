"""
                        StallFront

Multi-tenant ordering platform for food businesses and their stalls:
customer accounts, carts and orders, business/stall/product management
and a super-admin console.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
