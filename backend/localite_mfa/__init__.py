"""Localite multi-factor authentication core.

Enrollment and verification for TOTP, SMS one-time codes and single-use
backup codes, guarded by per-user attempt limiting in a shared key-value
store.

Layers:
- core: configuration, logging, errors and shared enums
- mfa.domain: records, result types and collaborator protocols
- mfa.infrastructure: store and SMS adapters, method subsystems
- mfa.application: the MFAService entry point
- bootstrap: dependency injection container
"""

__version__ = "1.0.0"
