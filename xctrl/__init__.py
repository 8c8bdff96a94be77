"""Telephony control helpers: dial-string builders, a consistent hash ring and simulated switch nodes."""

__version__ = "0.1.0"