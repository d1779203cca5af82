"""Filesystem, HTTP and logging adapters."""
