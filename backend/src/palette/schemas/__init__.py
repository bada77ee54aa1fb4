"""Pydantic schemas for the Palette API."""
