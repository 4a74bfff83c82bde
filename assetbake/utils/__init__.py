"""
Utils module for the asset baker
Contains source scanning, settings and logging setup
"""

from .settings import BakeConfig, SettingsManager
from .file_loader import SourceFile, scan_sources
from .diagnostics import configure_logging

__all__ = [
    'BakeConfig',
    'SettingsManager',
    'SourceFile',
    'scan_sources',
    'configure_logging',
]
