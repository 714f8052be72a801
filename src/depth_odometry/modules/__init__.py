"""Alignment pipeline modules."""
