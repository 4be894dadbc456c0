"""
dsmj-ai - Installs the dsmj AI toolkit and links its agents and skills into projects.
"""

__version__ = "1.0.0"
