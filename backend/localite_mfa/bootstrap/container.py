"""MFA Dependency Injection Container

Wires settings, the key-value store, the SMS channel, the three MFA
subsystems and the MFAService. Backends are chosen from configuration;
tests override the ``store``, ``sms_channel`` and ``clock`` providers.
"""

from dependency_injector import containers, providers

from localite_mfa.core.config import MFASettings, get_settings
from localite_mfa.core.logging import configure_logging
from localite_mfa.mfa.application.services.mfa_service import MFAService
from localite_mfa.mfa.infrastructure.adapters.clock_adapter import SystemClock
from localite_mfa.mfa.infrastructure.adapters.memory_store_adapter import (
    InMemoryKeyValueStore,
)
from localite_mfa.mfa.infrastructure.adapters.redis_store_adapter import (
    RedisKeyValueStore,
    create_redis_client,
)
from localite_mfa.mfa.infrastructure.adapters.sms_adapter import (
    HttpSMSAdapter,
    MockSMSAdapter,
    SimulatedSMSAdapter,
)
from localite_mfa.mfa.infrastructure.repositories.mfa_status_repository import (
    MFAStatusRepository,
)
from localite_mfa.mfa.infrastructure.services.attempt_counter import AttemptCounter
from localite_mfa.mfa.infrastructure.services.backup_code_mfa_provider import (
    BackupCodeMFAProvider,
)
from localite_mfa.mfa.infrastructure.services.code_generator import CodeGenerator
from localite_mfa.mfa.infrastructure.services.key_builder import MFAKeyBuilder
from localite_mfa.mfa.infrastructure.services.sms_mfa_provider import SMSMFAProvider
from localite_mfa.mfa.infrastructure.services.totp_mfa_provider import TOTPMFAProvider


def _store_backend(settings: MFASettings) -> str:
    return settings.store.backend_type.value


def _sms_provider(settings: MFASettings) -> str:
    return settings.sms.provider.value


class MFAContainer(containers.DeclarativeContainer):
    """DI container for the MFA core."""

    settings = providers.Singleton(get_settings)

    clock = providers.Singleton(SystemClock)

    key_builder = providers.Singleton(
        MFAKeyBuilder, prefix=settings.provided.store.key_prefix
    )

    # Key-value store
    redis_client = providers.Singleton(
        create_redis_client, config=settings.provided.store
    )

    store = providers.Selector(
        providers.Callable(_store_backend, settings),
        memory=providers.Singleton(InMemoryKeyValueStore, clock=clock),
        redis=providers.Singleton(RedisKeyValueStore, redis_client=redis_client),
    )

    # SMS delivery
    sms_channel = providers.Selector(
        providers.Callable(_sms_provider, settings),
        http=providers.Singleton(HttpSMSAdapter, config=settings.provided.sms),
        simulated=providers.Singleton(SimulatedSMSAdapter, config=settings.provided.sms),
        mock=providers.Singleton(MockSMSAdapter),
    )

    code_generator = providers.Singleton(CodeGenerator)

    status_repository = providers.Singleton(
        MFAStatusRepository,
        store=store,
        keys=key_builder,
        clock=clock,
        max_retries=settings.provided.store.cas_max_retries,
    )

    attempt_counter = providers.Singleton(
        AttemptCounter,
        store=store,
        keys=key_builder,
        clock=clock,
        limits=settings.provided.attempt_limits,
        totp_config=settings.provided.totp,
        sms_config=settings.provided.sms,
        backup_config=settings.provided.backup_codes,
    )

    # MFA subsystems
    totp_provider = providers.Singleton(
        TOTPMFAProvider,
        store=store,
        keys=key_builder,
        status_repository=status_repository,
        clock=clock,
        config=settings.provided.totp,
        max_retries=settings.provided.store.cas_max_retries,
    )

    sms_provider = providers.Singleton(
        SMSMFAProvider,
        store=store,
        keys=key_builder,
        counter=attempt_counter,
        status_repository=status_repository,
        channel=sms_channel,
        clock=clock,
        code_generator=code_generator,
        config=settings.provided.sms,
        max_retries=settings.provided.store.cas_max_retries,
    )

    backup_code_provider = providers.Singleton(
        BackupCodeMFAProvider,
        store=store,
        keys=key_builder,
        status_repository=status_repository,
        clock=clock,
        code_generator=code_generator,
        config=settings.provided.backup_codes,
        max_retries=settings.provided.store.cas_max_retries,
    )

    mfa_service = providers.Singleton(
        MFAService,
        store=store,
        keys=key_builder,
        clock=clock,
        status_repository=status_repository,
        counter=attempt_counter,
        totp_provider=totp_provider,
        sms_provider=sms_provider,
        backup_code_provider=backup_code_provider,
    )


def create_container(settings: MFASettings | None = None) -> MFAContainer:
    """Build a container and configure logging from its settings."""
    container = MFAContainer()
    if settings is not None:
        container.settings.override(providers.Object(settings))
    configure_logging(container.settings().logging)
    return container
