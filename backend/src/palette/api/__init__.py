"""API routers for Palette."""
