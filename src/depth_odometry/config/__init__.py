"""Dataclass configuration."""
