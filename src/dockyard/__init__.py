"""Dockyard: deploy repositories and keep their status honest."""

__version__ = "0.1.0"
