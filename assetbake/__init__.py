"""
assetbake
Offline baker turning Aseprite documents, PNG sprites, TrueType fonts and
audio into a packed runtime asset bundle
"""

__version__ = "0.1.0"
