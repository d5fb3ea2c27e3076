"""
File conversion gateway.

This package accepts uploaded files, identifies their real content type,
dispatches them to a conversion strategy keyed by (category, target format)
and publishes the result as a single-use download.
"""

__version__ = "1.0.0"
