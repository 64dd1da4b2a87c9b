"""
Turnstile: event reservations and tamper-evident ticket issuance
"""

__version__ = "1.0.0"
