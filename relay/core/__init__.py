"""Core interfaces and their implementations."""
