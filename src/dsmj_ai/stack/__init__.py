"""
Stack detection for projects.
"""

from .detector import STACK_MARKERS, describe, detect

__all__ = ["STACK_MARKERS", "describe", "detect"]
