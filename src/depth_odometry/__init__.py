"""Depth image odometry: projection, alignment and robust estimation."""
