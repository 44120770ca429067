"""Shared helpers for storefront internals."""
