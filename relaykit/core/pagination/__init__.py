"""Seek pagination cursors."""

from .cursor import CURSOR_VERSION, MAX_CURSOR_LENGTH, PaginationCursor

__all__ = ["CURSOR_VERSION", "MAX_CURSOR_LENGTH", "PaginationCursor"]
