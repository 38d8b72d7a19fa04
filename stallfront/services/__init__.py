"""
                        Services Module

Business logic behind the API routers. Providers with an external API
follow the hybrid pattern: a Mock implementation for development and a
Real one for production.

Services:
    - accounts: Sign-up, login, magic links, OTP codes, invites
    - orders: Checkout, staff orders and the order lifecycle
    - order_validation: Lead time, opening hours and capacity checks
    - carts: Customer carts
    - payment: Stripe payment processing
    - notifications: SendGrid email and Twilio SMS
    - webhooks: Signed outbound order events
    - analytics / export_manager: Reporting and spreadsheet exports
"""
