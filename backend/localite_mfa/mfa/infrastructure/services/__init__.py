"""MFA method subsystems and their shared services."""
