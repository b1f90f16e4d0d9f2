"""Utilities package for the lot traceability service."""
