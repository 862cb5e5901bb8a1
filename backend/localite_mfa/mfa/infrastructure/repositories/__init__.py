"""Key-value backed repositories."""

from .mfa_status_repository import MFAStatusRepository

__all__ = ["MFAStatusRepository"]
