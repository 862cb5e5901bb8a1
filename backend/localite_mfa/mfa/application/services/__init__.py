"""MFA application services."""

from .mfa_service import MFAService

__all__ = ["MFAService"]
