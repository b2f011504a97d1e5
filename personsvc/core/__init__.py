"""Core components of the person service."""
