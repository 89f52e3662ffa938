"""
adsift: filter-rule and heuristic ad detection.
"""

__version__ = "0.1.0"
