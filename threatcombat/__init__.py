"""
Threat Combat - Membership Platform

Role-based membership management for a cybersecurity-education community
organised into university chapters.
"""

__version__ = "1.0.0"
