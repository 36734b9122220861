"""Offline asset cache and push notification agent for the CRM web client."""

__version__ = "0.1.0"
