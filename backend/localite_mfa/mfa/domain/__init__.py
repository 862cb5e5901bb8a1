"""
MFA Domain Layer

Records, enumerations, result value objects and the protocols of the
external collaborators.
"""

from .entities import BackupCode, BackupCodeSet, MFAStatus, SMSChallenge, TOTPSecret
from .enums import CounterWindow, MFAMethod, MFAStatusKind, VerificationResult
from .interfaces import IClock, IKeyValueStore, IMFAProvider, ISMSDeliveryChannel
from .value_objects import AttemptCounts, MFAResult, SMSDeliveryReceipt

__all__ = [
    "AttemptCounts",
    "BackupCode",
    "BackupCodeSet",
    "CounterWindow",
    "IClock",
    "IKeyValueStore",
    "IMFAProvider",
    "ISMSDeliveryChannel",
    "MFAMethod",
    "MFAResult",
    "MFAStatus",
    "MFAStatusKind",
    "SMSChallenge",
    "SMSDeliveryReceipt",
    "TOTPSecret",
    "VerificationResult",
]
