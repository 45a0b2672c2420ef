"""Photometric tracking and cuboid landmarks for object-level SLAM."""

__version__ = "0.1.0"
