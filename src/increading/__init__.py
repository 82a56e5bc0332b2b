"""increading: spaced repetition and incremental reading for a Markdown vault."""

from .consts import VERSION

__version__ = VERSION
