"""
Autolabel

Reads handwritten sample codes from photographs and groups the photos
without a readable code by visual and temporal similarity.
"""

__version__ = "0.1.0"
