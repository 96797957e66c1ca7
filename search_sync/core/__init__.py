"""Core utilities shared across the service."""
