"""Palette: account, social identity and session service."""

__version__ = "0.1.0"
