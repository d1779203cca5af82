"""Archiving pipeline core: crawling, resolution, archiving and rendering."""
