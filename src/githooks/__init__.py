"""
githooks - a single dispatcher for Git and Gerrit hooks.
"""

__version__ = "1.0.0"
