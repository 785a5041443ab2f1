"""
ShelfSync
Outbound sync queue from the store database to AIMS electronic shelf labels
"""

__version__ = "1.0.0"
