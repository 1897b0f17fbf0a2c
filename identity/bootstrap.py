"""Startup wiring: configuration, storage selection, role seeding.

Everything here runs once per process. Failures are fatal and raise
ConfigurationError so a misconfigured engine never starts serving.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from importlib import resources
from typing import Any, Callable

from pydantic import ValidationError

from clients.email_client import EmailGatewayClient
from clients.postgres_client import PostgresClient
from clients.vault_client import get_database_url, get_email_config, get_signing_secrets
from identity.config import IdentityConfig
from identity.ephemeral import EphemeralTokenWorkflow
from identity.exceptions import ConfigurationError
from identity.lockout import LockoutGuard
from identity.passwords import CredentialVerifier
from identity.permissions import PermissionResolver
from identity.security_logger import SecurityLogger
from identity.service import AccountService
from identity.session import SessionManager
from identity.storage import IdentityStorage, MemoryIdentityStorage, PostgresIdentityStorage
from identity.token_store import TokenStore
from identity.tokens import TokenIssuer
from identity.types import Role
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

# Seeded on first start; existing roles with these names are left alone
DEFAULT_ROLES: list[dict[str, Any]] = [
    {
        "name": "admin",
        "description": "Administrator with full access",
        "permissions": [
            "admin:all",
            "user:read", "user:create", "user:update", "user:delete", "user:list",
            "role:read", "role:create", "role:update", "role:delete", "role:list",
            "auth:login", "auth:register", "auth:refresh", "auth:logout",
            "profile:read", "profile:update", "profile:delete",
            "content:read", "content:create", "content:update", "content:delete", "content:publish",
            "file:upload", "file:download", "file:delete", "file:list",
        ],
        "is_system": True,
        "is_default": False,
    },
    {
        "name": "user",
        "description": "Regular user with basic permissions",
        "permissions": [
            "auth:login", "auth:register", "auth:refresh", "auth:logout",
            "profile:read", "profile:update",
            "content:read",
            "file:upload", "file:download", "file:list",
        ],
        "is_system": True,
        "is_default": True,
    },
    {
        "name": "moderator",
        "description": "Moderator with content management permissions",
        "permissions": [
            "auth:login", "auth:refresh", "auth:logout",
            "profile:read", "profile:update",
            "user:read", "user:list",
            "content:read", "content:create", "content:update", "content:delete", "content:publish",
            "file:upload", "file:download", "file:delete", "file:list",
        ],
        "is_system": False,
        "is_default": False,
    },
]


def config_from_vault(**overrides: Any) -> IdentityConfig:
    """Build the config with signing secrets read from Vault.

    Raises:
        ConfigurationError: Secrets too short, identical, or a bound violated.
    """
    signing = get_signing_secrets()
    try:
        return IdentityConfig(
            access_token_secret=signing["access_secret"],
            refresh_token_secret=signing["refresh_secret"],
            **overrides,
        )
    except ValidationError as e:
        # Error text never includes the secret values (repr=False)
        raise ConfigurationError(f"Invalid identity configuration: {e.error_count()} error(s)") from e


def build_storage(
    config: IdentityConfig,
    postgres: PostgresClient | None = None,
    clock: Callable[[], datetime] = now_utc,
) -> IdentityStorage:
    """Pick the one storage adapter this process will use."""
    if config.storage_backend == "memory":
        logger.warning("Using in-memory identity storage; nothing survives a restart")
        return MemoryIdentityStorage(clock=clock)

    if postgres is None:
        postgres = PostgresClient(get_database_url())
    return PostgresIdentityStorage(postgres)


def apply_schema(postgres: PostgresClient) -> None:
    """Create the identity tables if they do not exist yet."""
    ddl = resources.files("identity.storage").joinpath("schema.sql").read_text(encoding="utf-8")
    postgres.execute(ddl)
    logger.info("Identity schema applied")


def seed_default_roles(resolver: PermissionResolver) -> list[Role]:
    """Create the built-in roles that are missing. Safe to run on every start."""
    existing = {role.name for role in resolver.list_roles()}
    created = []
    for definition in DEFAULT_ROLES:
        name = definition["name"]
        if name in existing:
            logger.info(f"Role '{name}' already exists")
            continue
        created.append(resolver.create_role(**definition))
        logger.info(f"Role '{name}' created")
    return created


@dataclass
class IdentityEngine:
    """Fully wired engine components sharing one storage adapter."""

    config: IdentityConfig
    storage: IdentityStorage
    security_logger: SecurityLogger
    verifier: CredentialVerifier
    issuer: TokenIssuer
    token_store: TokenStore
    lockout: LockoutGuard
    permissions: PermissionResolver
    sessions: SessionManager
    ephemeral: EphemeralTokenWorkflow
    accounts: AccountService


def build_engine(
    config: IdentityConfig,
    storage: IdentityStorage | None = None,
    email_client: EmailGatewayClient | None = None,
    clock: Callable[[], datetime] = now_utc,
) -> IdentityEngine:
    """Wire every component. Missing collaborators are built from Vault."""
    if storage is None:
        storage = build_storage(config, clock=clock)
    if email_client is None:
        email_client = EmailGatewayClient(app_url=config.app_base_url, **get_email_config())

    security_logger = SecurityLogger(storage, clock=clock)
    verifier = CredentialVerifier(rounds=config.bcrypt_rounds)
    issuer = TokenIssuer(config, clock=clock)
    token_store = TokenStore(storage, clock=clock)
    lockout = LockoutGuard(storage, config, security_logger, clock=clock)
    resolver = PermissionResolver(storage, security_logger)
    sessions = SessionManager(
        storage=storage,
        verifier=verifier,
        issuer=issuer,
        token_store=token_store,
        lockout=lockout,
        resolver=resolver,
        config=config,
        security_logger=security_logger,
        clock=clock,
    )
    ephemeral = EphemeralTokenWorkflow(
        storage=storage,
        verifier=verifier,
        issuer=issuer,
        token_store=token_store,
        sessions=sessions,
        email_client=email_client,
        config=config,
        security_logger=security_logger,
        clock=clock,
    )
    accounts = AccountService(storage, verifier, sessions, ephemeral, security_logger)

    return IdentityEngine(
        config=config,
        storage=storage,
        security_logger=security_logger,
        verifier=verifier,
        issuer=issuer,
        token_store=token_store,
        lockout=lockout,
        permissions=resolver,
        sessions=sessions,
        ephemeral=ephemeral,
        accounts=accounts,
    )
