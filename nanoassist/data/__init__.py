"""
Demo Data Module
"""
from .generators import CallGenerator, DemoDataGenerator, MetricsGenerator, ProfileGenerator

__all__ = [
    "CallGenerator",
    "DemoDataGenerator",
    "MetricsGenerator",
    "ProfileGenerator",
]
