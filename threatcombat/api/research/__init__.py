"""Research publishing module."""
