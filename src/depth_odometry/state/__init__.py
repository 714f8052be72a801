"""Pose state records."""
