"""
MFA records persisted in the key-value store.

Every record serializes to a JSON document with camelCase keys. Datetimes are
ISO-8601 strings, except SMS challenge timestamps which are epoch
milliseconds so expiry can be compared without parsing.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from localite_mfa.mfa.domain.enums import MFAMethod, MFAStatusKind


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _require_iso(value: Any) -> datetime:
    if not isinstance(value, str) or not value:
        raise ValueError(f"expected an ISO-8601 timestamp, got {value!r}")
    return datetime.fromisoformat(value)


class RecordDecodeError(ValueError):
    """Raised when a stored document cannot be decoded into a record."""


def decode_document(raw: str | bytes) -> dict[str, Any]:
    """Decode a JSON document, raising RecordDecodeError on garbage."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise RecordDecodeError(str(e)) from e
    if not isinstance(data, dict):
        raise RecordDecodeError("Stored record is not a JSON object")
    return data


def encode_document(data: dict[str, Any]) -> str:
    return json.dumps(data, separators=(",", ":"), sort_keys=True)


@dataclass
class MFAStatus:
    """
    Per-user MFA enrollment state.

    Invariant: ``status`` is ENABLED exactly when ``enabled_methods`` is not
    empty, and a method sits in at most one of the two method lists.
    """

    uid: str
    status: MFAStatusKind = MFAStatusKind.DISABLED
    enabled_methods: list[MFAMethod] = field(default_factory=list)
    pending_methods: list[MFAMethod] = field(default_factory=list)
    last_updated: datetime | None = None

    @classmethod
    def default(cls, uid: str) -> "MFAStatus":
        return cls(uid=uid)

    def mark_pending(self, method: MFAMethod, now: datetime) -> None:
        """Record an enrollment in progress. Enabled methods stay enabled."""
        if method in self.enabled_methods:
            return
        if method not in self.pending_methods:
            self.pending_methods.append(method)
        self._touch(now)

    def mark_enabled(self, method: MFAMethod, now: datetime) -> None:
        if method in self.pending_methods:
            self.pending_methods.remove(method)
        if method not in self.enabled_methods:
            self.enabled_methods.append(method)
        self._touch(now)

    def remove(self, method: MFAMethod, now: datetime) -> None:
        if method in self.pending_methods:
            self.pending_methods.remove(method)
        if method in self.enabled_methods:
            self.enabled_methods.remove(method)
        self._touch(now)

    def clear_pending(self, method: MFAMethod, now: datetime) -> None:
        if method in self.pending_methods:
            self.pending_methods.remove(method)
            self._touch(now)

    def is_enabled(self, method: MFAMethod) -> bool:
        return method in self.enabled_methods

    def _touch(self, now: datetime) -> None:
        self.status = self.compute_status()
        self.last_updated = now

    def compute_status(self) -> MFAStatusKind:
        if self.enabled_methods:
            return MFAStatusKind.ENABLED
        if self.pending_methods:
            return MFAStatusKind.PENDING
        return MFAStatusKind.DISABLED

    def to_dict(self) -> dict[str, Any]:
        return {
            "uid": self.uid,
            "status": self.status.value,
            "enabledMethods": [m.value for m in self.enabled_methods],
            "pendingMethods": [m.value for m in self.pending_methods],
            "lastUpdated": _iso(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MFAStatus":
        try:
            record = cls(
                uid=data["uid"],
                status=MFAStatusKind(data.get("status", "disabled")),
                enabled_methods=[MFAMethod(m) for m in data.get("enabledMethods", [])],
                pending_methods=[MFAMethod(m) for m in data.get("pendingMethods", [])],
                last_updated=_parse_iso(data.get("lastUpdated")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RecordDecodeError(f"Invalid MFA status record: {e}") from e
        # Repair records written by older code that broke the invariant
        record.pending_methods = [
            m for m in record.pending_methods if m not in record.enabled_methods
        ]
        record.status = record.compute_status()
        return record


@dataclass
class TOTPSecret:
    """Authenticator-app shared secret."""

    secret: str
    enabled: bool
    created_at: datetime
    enabled_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "secret": self.secret,
            "enabled": self.enabled,
            "createdAt": _iso(self.created_at),
            "enabledAt": _iso(self.enabled_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TOTPSecret":
        try:
            return cls(
                secret=data["secret"],
                enabled=bool(data.get("enabled", False)),
                created_at=_require_iso(data["createdAt"]),
                enabled_at=_parse_iso(data.get("enabledAt")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RecordDecodeError(f"Invalid TOTP record: {e}") from e


@dataclass
class SMSChallenge:
    """One outstanding SMS one-time code for a user."""

    code: str
    phone: str
    created_at_ms: int
    expires_at_ms: int
    attempts: int = 0
    is_resend: bool = False

    def is_expired(self, now_ms: int) -> bool:
        return now_ms > self.expires_at_ms

    def remaining_ttl(self, now_ms: int) -> int:
        """Whole seconds left before expiry, never below one."""
        return max(1, -(-(self.expires_at_ms - now_ms) // 1000))

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "phone": self.phone,
            "createdAt": self.created_at_ms,
            "expiresAt": self.expires_at_ms,
            "attempts": self.attempts,
            "isResend": self.is_resend,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SMSChallenge":
        try:
            return cls(
                code=str(data["code"]),
                phone=str(data["phone"]),
                created_at_ms=int(data["createdAt"]),
                expires_at_ms=int(data["expiresAt"]),
                attempts=int(data.get("attempts", 0)),
                is_resend=bool(data.get("isResend", False)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RecordDecodeError(f"Invalid SMS challenge: {e}") from e


@dataclass
class BackupCode:
    code: str
    used: bool = False
    used_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "used": self.used, "usedAt": _iso(self.used_at)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BackupCode":
        return cls(
            code=str(data["code"]),
            used=bool(data.get("used", False)),
            used_at=_parse_iso(data.get("usedAt")),
        )


@dataclass
class BackupCodeSet:
    """A single generation of recovery codes."""

    codes: list[BackupCode]
    enabled: bool
    created_at: datetime
    last_used_at: datetime | None = None
    enabled_at: datetime | None = None

    @property
    def remaining(self) -> int:
        return sum(1 for entry in self.codes if not entry.used)

    def consume(self, normalized_code: str, now: datetime) -> bool:
        """Mark the first unused matching entry as used."""
        for entry in self.codes:
            if not entry.used and entry.code == normalized_code:
                entry.used = True
                entry.used_at = now
                self.last_used_at = now
                return True
        return False

    def to_dict(self) -> dict[str, Any]:
        return {
            "codes": [entry.to_dict() for entry in self.codes],
            "enabled": self.enabled,
            "createdAt": _iso(self.created_at),
            "lastUsedAt": _iso(self.last_used_at),
            "enabledAt": _iso(self.enabled_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BackupCodeSet":
        try:
            return cls(
                codes=[BackupCode.from_dict(entry) for entry in data["codes"]],
                enabled=bool(data.get("enabled", False)),
                created_at=_require_iso(data["createdAt"]),
                last_used_at=_parse_iso(data.get("lastUsedAt")),
                enabled_at=_parse_iso(data.get("enabledAt")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RecordDecodeError(f"Invalid backup code set: {e}") from e
