"""
TOTP MFA Provider Implementation

Time-based One-Time Password enrollment and verification using pyotp.

A code accepted once can be accepted again inside the same tolerance window,
there is no consumed-code ledger.
"""

import base64
import hashlib
import io

import pyotp
import qrcode
from qrcode.image.svg import SvgPathImage

from localite_mfa.core.config import TOTPConfig
from localite_mfa.core.errors import StoreUnavailableError
from localite_mfa.core.logging import get_logger
from localite_mfa.mfa.domain.entities import (
    RecordDecodeError,
    TOTPSecret,
    decode_document,
    encode_document,
)
from localite_mfa.mfa.domain.enums import MFAMethod, VerificationResult
from localite_mfa.mfa.domain.interfaces import IClock, IKeyValueStore
from localite_mfa.mfa.domain.value_objects import MFAResult
from localite_mfa.mfa.infrastructure.repositories.atomic import Write, atomic_update
from localite_mfa.mfa.infrastructure.repositories.mfa_status_repository import (
    MFAStatusRepository,
)
from localite_mfa.mfa.infrastructure.services.key_builder import MFAKeyBuilder
from localite_mfa.mfa.infrastructure.services.result_guard import guard_store_errors

logger = get_logger(__name__)


class TOTPMFAProvider:
    """TOTP subsystem backed by the key-value store."""

    def __init__(
        self,
        store: IKeyValueStore,
        keys: MFAKeyBuilder,
        status_repository: MFAStatusRepository,
        clock: IClock,
        config: TOTPConfig,
        max_retries: int = 5,
    ):
        """Initialize TOTP provider.

        Args:
            store: Key-value store holding the secrets
            keys: Store key layout
            status_repository: MFA status records
            clock: Time source used for code validation
            config: Issuer name, digits, interval and tolerance window
            max_retries: Compare-and-set retries for record updates
        """
        self._store = store
        self._keys = keys
        self._status = status_repository
        self._clock = clock
        self._config = config
        self._max_retries = max_retries

    @property
    def method(self) -> MFAMethod:
        """Get MFA method type."""
        return MFAMethod.TOTP

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(
            secret,
            digits=self._config.digits,
            interval=self._config.interval,
            digest=hashlib.sha1,
            issuer=self._config.issuer,
        )

    def generate_uri(self, secret: str, email: str) -> str:
        """Build the ``otpauth://`` provisioning URI."""
        return self._totp(secret).provisioning_uri(
            name=email, issuer_name=self._config.issuer
        )

    def generate_qr_code(self, uri: str) -> str:
        """Render a provisioning URI as an image data URI."""
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=10,
            border=4,
        )
        qr.add_data(uri)
        qr.make(fit=True)

        stream = io.BytesIO()
        if self._config.qr_format == "png":
            img = qr.make_image(fill_color="black", back_color="white")
            img.save(stream, format="PNG")
            mime = "image/png"
        else:
            img = qr.make_image(image_factory=SvgPathImage)
            img.save(stream)
            mime = "image/svg+xml"

        return f"data:{mime};base64,{base64.b64encode(stream.getvalue()).decode('ascii')}"

    def current_code(self, secret: str) -> str:
        """Code for the current time step (for tests and support tooling)."""
        return self._totp(secret).at(self._clock.now())

    def remaining_seconds(self) -> int:
        """Seconds until the current code rotates."""
        timestamp = int(self._clock.now().timestamp())
        return self._config.interval - timestamp % self._config.interval

    def matches(self, secret: str, code: str) -> bool:
        """Check ``code`` against the steps around now."""
        code = code.replace(" ", "")
        if not code.isdigit() or len(code) != self._config.digits:
            return False
        return self._totp(secret).verify(
            code, for_time=self._clock.now(), valid_window=self._config.valid_window
        )

    async def _load(self, uid: str) -> TOTPSecret | None:
        raw = await self._store.get(self._keys.totp_secret(uid))
        if raw is None:
            return None
        try:
            return TOTPSecret.from_dict(decode_document(raw))
        except RecordDecodeError as e:
            logger.warning("Ignoring unreadable TOTP record", uid=uid, error=str(e))
            return None

    @guard_store_errors("totp.setup")
    async def setup(self, uid: str, email: str) -> MFAResult:
        """Generate a secret and enrollment QR code.

        The secret is returned here and never again.
        """
        existing = await self._load(uid)
        if existing and existing.enabled:
            return MFAResult.fail(
                VerificationResult.ALREADY_ENABLED, "TOTP is already set up and enabled"
            )

        secret = pyotp.random_base32()
        record = TOTPSecret(secret=secret, enabled=False, created_at=self._clock.now())
        await self._store.set(
            self._keys.totp_secret(uid), encode_document(record.to_dict())
        )
        await self._status.mark_pending(uid, MFAMethod.TOTP)

        uri = self.generate_uri(secret, email)
        logger.info("TOTP setup started", uid=uid)
        return MFAResult.ok(
            "Scan the QR code with your authenticator app and enter a code to enable TOTP",
            secret=secret,
            uri=uri,
            qr_code=self.generate_qr_code(uri),
            manual_entry_key=secret,
        )

    @guard_store_errors("totp.verify")
    async def verify(self, uid: str, code: str) -> MFAResult:
        record = await self._load(uid)
        if record is None:
            return MFAResult.fail(VerificationResult.NOT_SET_UP, "TOTP is not set up")

        if not self.matches(record.secret, code):
            logger.info("TOTP code rejected", uid=uid)
            return MFAResult.fail(VerificationResult.INVALID_CODE, "Invalid TOTP code")

        logger.info("TOTP code accepted", uid=uid)
        return MFAResult.ok("TOTP verified")

    @guard_store_errors("totp.enable")
    async def enable(self, uid: str, code: str) -> MFAResult:
        record = await self._load(uid)
        if record is None:
            return MFAResult.fail(VerificationResult.NOT_SET_UP, "TOTP is not set up")
        if record.enabled:
            return MFAResult.fail(
                VerificationResult.ALREADY_ENABLED, "TOTP is already enabled"
            )
        if not self.matches(record.secret, code):
            return MFAResult.fail(
                VerificationResult.INVALID_CODE, "Invalid TOTP code, TOTP not enabled"
            )

        now = self._clock.now()

        def flip(raw: str | None) -> Write | None:
            if raw is None:
                return None
            try:
                current = TOTPSecret.from_dict(decode_document(raw))
            except RecordDecodeError:
                return None
            if current.secret != record.secret:
                # Re-enrolled meanwhile, the verified code belongs to the old secret
                return None
            current.enabled = True
            current.enabled_at = now
            return Write(encode_document(current.to_dict()))

        written = await atomic_update(
            self._store,
            self._keys.totp_secret(uid),
            flip,
            record=f"totp_secret:{uid}",
            max_retries=self._max_retries,
        )
        if not written:
            return MFAResult.fail(
                VerificationResult.NOT_SET_UP, "TOTP setup changed, please set up again"
            )

        await self._status.mark_enabled(uid, MFAMethod.TOTP)
        logger.info("TOTP enabled", uid=uid)
        return MFAResult.ok("TOTP enabled", enabled_at=now.isoformat())

    @guard_store_errors("totp.disable")
    async def disable(self, uid: str) -> MFAResult:
        await self._store.delete(self._keys.totp_secret(uid))
        await self._status.remove_method(uid, MFAMethod.TOTP)
        logger.info("TOTP disabled", uid=uid)
        return MFAResult.ok("TOTP disabled")

    async def is_enabled(self, uid: str) -> bool:
        try:
            record = await self._load(uid)
        except StoreUnavailableError:
            return False
        return bool(record and record.enabled)
