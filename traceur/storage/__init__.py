"""Trace artifact storage."""

from .file_manager import FileManager

__all__ = [
    'FileManager',
]
