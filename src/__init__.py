"""Cooperative lot consolidation and traceability service."""
