"""Identity and access control engine."""

from identity.exceptions import (
    IdentityError,
    InvalidCredentials,
    AccountLocked,
    AccountInactive,
    TokenError,
    TokenExpired,
    TokenInvalidSignature,
    TokenWrongKind,
    TokenRevokedOrUnknown,
    ImmutableRoleViolation,
    RoleInUse,
    RoleNotFound,
    RoleNameTaken,
    InvalidPermission,
    InvalidRoleDefinition,
    DefaultRoleMissing,
    PermissionDenied,
    UserNotFound,
    EmailAlreadyRegistered,
    HashingError,
    ConfigurationError,
)
from identity.types import (
    TokenKind,
    User,
    Role,
    TokenRecord,
    UserUpdate,
    RoleUpdate,
    IssuedToken,
    AccessClaims,
    LoginResult,
    RefreshResult,
)
from identity.config import IdentityConfig
from identity.security_logger import SecurityLogger, SecurityEvent
from identity.passwords import CredentialVerifier
from identity.tokens import TokenIssuer
from identity.token_store import TokenStore
from identity.lockout import LockoutGuard
from identity.permissions import PermissionResolver, PERMISSIONS
from identity.session import SessionManager
from identity.ephemeral import EphemeralTokenWorkflow
from identity.service import AccountService
from identity.bootstrap import IdentityEngine, build_engine, build_storage, config_from_vault, seed_default_roles
