"""
Content delivery cache layer for the AI configuration catalog.
"""
__version__ = "1.0.0"
