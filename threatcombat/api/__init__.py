"""Threat Combat REST API."""
