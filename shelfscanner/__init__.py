"""
Shelf Scanner - bookshelf photo to reading recommendations.
"""

__version__ = "1.0.0"
