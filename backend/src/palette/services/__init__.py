"""
Services package for Palette.

This package contains the business logic for accounts and for resolving
social identities into accounts. Modules are imported directly to keep the
providers package free to depend on the shared identity types.
"""
