"""
Format-specific validators for conversion output.
"""

from . import archive, image, media, office, pdf, text

__all__ = ['archive', 'image', 'media', 'office', 'pdf', 'text']
