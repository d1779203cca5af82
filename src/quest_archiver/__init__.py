"""Incremental archiver for serialized interactive fiction."""

__version__ = "0.1.0"
