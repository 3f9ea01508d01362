"""Offline-aware request dispatcher with coordinated credential refresh."""
