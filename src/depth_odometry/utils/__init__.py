"""Enums and factories."""
