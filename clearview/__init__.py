"""Clearview — real-time haze removal and object detection pipeline."""

__version__ = "0.1.0"
