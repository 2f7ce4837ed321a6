"""
Study-abroad consulting platform API.

Authentication with single-device sessions, admin OTP login, service purchases,
Stripe checkout and webhook-driven fulfilment.
"""

__version__ = "1.0.0"
