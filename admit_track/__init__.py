"""
University application tracker: status engine, requirement progress,
deadline alerts, and notification scheduling.
"""

__version__ = "0.3.0"
