"""Chapter management module."""
