"""Multi-factor authentication module."""
