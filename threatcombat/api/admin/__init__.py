"""Audit administration module."""
