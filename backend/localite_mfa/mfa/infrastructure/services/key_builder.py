"""Store key layout for MFA records and counters."""

from datetime import datetime

from localite_mfa.mfa.domain.enums import MFAMethod

TOTP_SECRET = "totp_secret"
SMS_CHALLENGE = "sms_code"
BACKUP_CODES = "backup_codes"
STATUS = "mfa_status"
ATTEMPTS = "mfa_attempts"
DAILY_ATTEMPTS = "mfa_daily_attempts"
DAILY_SENDS = "mfa_daily_sends"
RESEND = "mfa_resend"


def escape_glob(text: str) -> str:
    """Quote glob metacharacters so Redis MATCH and fnmatch both read them literally."""
    quoted = []
    for char in text:
        if char == "\\":
            # Redis treats a backslash inside a class as an escape
            quoted.append("[\\\\]")
        elif char in "*?[":
            quoted.append(f"[{char}]")
        else:
            quoted.append(char)
    return "".join(quoted)


class MFAKeyBuilder:
    """Builds ``{prefix}{kind}:{uid}[:...]`` keys."""

    def __init__(self, prefix: str = "mfa:"):
        self.prefix = prefix

    def _key(self, kind: str, *parts: str) -> str:
        return f"{self.prefix}{kind}:" + ":".join(parts)

    def totp_secret(self, uid: str) -> str:
        return self._key(TOTP_SECRET, uid)

    def sms_challenge(self, uid: str) -> str:
        return self._key(SMS_CHALLENGE, uid)

    def backup_codes(self, uid: str) -> str:
        return self._key(BACKUP_CODES, uid)

    def status(self, uid: str) -> str:
        return self._key(STATUS, uid)

    def attempts(self, uid: str, method: MFAMethod) -> str:
        return self._key(ATTEMPTS, uid, method.value)

    def daily_attempts(self, uid: str, method: MFAMethod, day: datetime) -> str:
        return self._key(DAILY_ATTEMPTS, uid, method.value, day.strftime("%Y-%m-%d"))

    def daily_sends(self, uid: str, day: datetime) -> str:
        return self._key(DAILY_SENDS, uid, day.strftime("%Y-%m-%d"))

    def resend(self, uid: str) -> str:
        return self._key(RESEND, uid)

    def all_keys_pattern(self) -> str:
        return f"{escape_glob(self.prefix)}*"

    def user_patterns(self, uid: str) -> list[str]:
        prefix, owner = escape_glob(self.prefix), escape_glob(uid)
        return [f"{prefix}*:{owner}", f"{prefix}*:{owner}:*"]

    def kind_of(self, key: str) -> str | None:
        """Record kind of a key built here, ``None`` for foreign keys."""
        if not key.startswith(self.prefix):
            return None
        kind, _, _ = key[len(self.prefix):].partition(":")
        return kind

    def owner_of(self, key: str) -> str | None:
        """Everything after the kind: the uid for record keys."""
        if not key.startswith(self.prefix):
            return None
        _, _, owner = key[len(self.prefix):].partition(":")
        return owner
