"""
Bake module
Bundle tables and writer, build cache, pipeline driver and command line
"""

from .pipeline import BakePipeline, BakeResult, bake
from .tables import TABLE_TYPES

__all__ = [
    'BakePipeline',
    'BakeResult',
    'bake',
    'TABLE_TYPES',
]
