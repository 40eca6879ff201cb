"""Automatic save backups for Into the Dead: Our Darkest Days."""

__version__ = "0.4.0"
