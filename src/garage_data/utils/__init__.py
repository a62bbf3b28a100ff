"""
Utilities for garage data
Path management and logging setup
"""

from .paths import DataPaths, get_data_paths
from .logging_setup import setup_logging

__all__ = ["DataPaths", "get_data_paths", "setup_logging"]
