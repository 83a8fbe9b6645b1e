"""Chapter events module."""
