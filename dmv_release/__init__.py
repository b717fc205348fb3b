"""
DMV release-of-liability automation
"""

__version__ = "1.0.0"
