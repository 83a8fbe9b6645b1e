"""Training courses module."""
