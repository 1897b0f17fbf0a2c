"""Role-based permission resolution and role administration.

A role grants a permission if it lists it, or if it lists the wildcard
``admin:all``. System roles keep their name and permission set forever;
only their description and active flag may change.
"""

import logging
import re
from uuid import UUID

from identity.exceptions import (
    IdentityError,
    ImmutableRoleViolation,
    InvalidPermission,
    InvalidRoleDefinition,
    PermissionDenied,
    RoleInUse,
    RoleNotFound,
    UserNotFound,
)
from identity.security_logger import SecurityEvent, SecurityLogger
from identity.storage.base import IdentityStorage
from identity.types import WILDCARD_PERMISSION, Role, RoleUpdate, User, UserUpdate

logger = logging.getLogger(__name__)

# Known permission strings, "resource:action"
PERMISSIONS: frozenset[str] = frozenset({
    WILDCARD_PERMISSION,
    "user:read", "user:create", "user:update", "user:delete", "user:list",
    "role:read", "role:create", "role:update", "role:delete", "role:list",
    "auth:login", "auth:register", "auth:refresh", "auth:logout",
    "profile:read", "profile:update", "profile:delete",
    "content:read", "content:create", "content:update", "content:delete", "content:publish",
    "file:upload", "file:download", "file:delete", "file:list",
})

ROLE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{2,50}$")
MIN_DESCRIPTION_LENGTH = 5
MAX_DESCRIPTION_LENGTH = 500


def validate_role_name(name: str) -> str:
    if not ROLE_NAME_PATTERN.match(name):
        raise InvalidRoleDefinition(
            "Role name must be 2-50 characters of letters, digits, underscores or hyphens"
        )
    return name


def validate_description(description: str | None) -> str | None:
    if description is None:
        return None
    if not MIN_DESCRIPTION_LENGTH <= len(description) <= MAX_DESCRIPTION_LENGTH:
        raise InvalidRoleDefinition(
            f"Role description must be {MIN_DESCRIPTION_LENGTH}-{MAX_DESCRIPTION_LENGTH} characters"
        )
    return description


def validate_permissions(permissions: list[str]) -> list[str]:
    """Reject unknown permissions; drop duplicates keeping first-seen order."""
    unknown = [p for p in permissions if p not in PERMISSIONS]
    if unknown:
        raise InvalidPermission(unknown)
    return list(dict.fromkeys(permissions))


class PermissionResolver:
    """Answers permission questions and administers roles."""

    def __init__(self, storage: IdentityStorage, security_logger: SecurityLogger):
        self._storage = storage
        self._security_logger = security_logger

    # -- checks --------------------------------------------------------------

    @staticmethod
    def has_permission(role: Role, permission: str) -> bool:
        return role.has_permission(permission)

    @staticmethod
    def has_any(role: Role, permissions: list[str]) -> bool:
        return role.has_any(permissions)

    @staticmethod
    def has_all(role: Role, permissions: list[str]) -> bool:
        return role.has_all(permissions)

    @staticmethod
    def effective_permissions(role: Role) -> list[str]:
        """Permissions the role grants right now. An inactive role grants none."""
        return list(role.permissions) if role.is_active else []

    @staticmethod
    def require(permissions: list[str], *required: str, any_of: bool = False) -> None:
        """
        Check a resolved permission list (e.g. from access claims).

        Raises:
            PermissionDenied: Missing all (any_of=True) or any of required.
        """
        if WILDCARD_PERMISSION in permissions or not required:
            return
        granted = [p in permissions for p in required]
        if (any(granted) if any_of else all(granted)):
            return
        missing = [p for p, ok in zip(required, granted) if not ok]
        raise PermissionDenied(f"Missing permission: {', '.join(missing)}")

    # -- lookups -------------------------------------------------------------

    def get_role(self, role_id: UUID) -> Role:
        role = self._storage.get_role(role_id)
        if role is None:
            raise RoleNotFound(f"Role {role_id} not found")
        return role

    def get_role_by_name(self, name: str) -> Role:
        role = self._storage.get_role_by_name(name)
        if role is None:
            raise RoleNotFound(f"Role '{name}' not found")
        return role

    def list_roles(self) -> list[Role]:
        return self._storage.list_roles()

    def resolve(self, user: User) -> Role:
        """The user's current role.

        Raises:
            RoleNotFound: User references a role that no longer exists.
        """
        return self.get_role(user.role_id)

    # -- administration ------------------------------------------------------

    def create_role(
        self,
        name: str,
        permissions: list[str],
        description: str | None = None,
        is_system: bool = False,
        is_default: bool = False,
    ) -> Role:
        """
        Create a role.

        Raises:
            InvalidRoleDefinition: Malformed name or description.
            InvalidPermission: Unknown permission string.
            RoleNameTaken: Name already used.
        """
        role = self._storage.create_role(
            name=validate_role_name(name),
            permissions=validate_permissions(permissions),
            description=validate_description(description),
            is_system=is_system,
        )
        logger.info(f"Created role '{role.name}' ({role.id})")
        if is_default:
            role = self.set_default(role.id)
        return role

    def set_default(self, role_id: UUID) -> Role:
        """
        Make role_id the only default role.

        Raises:
            RoleNotFound: Role missing or inactive.
        """
        current = self.get_role(role_id)
        if not current.is_active:
            raise RoleNotFound(f"Role '{current.name}' is inactive")

        # Storage re-checks is_active in the same step as the swap
        role = self._storage.set_default_role(role_id)
        if role is None:
            raise RoleNotFound(f"Role '{current.name}' is missing or inactive")
        logger.info(f"Default role is now '{role.name}'")
        self._security_logger.log(
            SecurityEvent.ROLE_CHANGED,
            details={"role_id": str(role_id), "fields": ["is_default"]},
        )
        return role

    def mutate(self, role_id: UUID, update: RoleUpdate | dict) -> Role:
        """
        Apply a partial update to a role.

        Only fields whose value actually differs count as changes, so a
        client resubmitting a system role's unchanged name is not rejected.

        Raises:
            pydantic.ValidationError: Unknown field in a dict update.
            ImmutableRoleViolation: Protected field of a system role changed.
            RoleInUse: Deactivating the current default role.
        """
        if isinstance(update, dict):
            update = RoleUpdate(**update)

        role = self.get_role(role_id)
        requested = update.model_dump(exclude_unset=True)
        changes = {k: v for k, v in requested.items() if getattr(role, k) != v}

        if role.is_system:
            forbidden = set(changes) - RoleUpdate.SYSTEM_MUTABLE_FIELDS
            if forbidden:
                raise ImmutableRoleViolation(
                    f"System role '{role.name}' cannot change: {', '.join(sorted(forbidden))}"
                )

        if not changes:
            return role

        if role.is_default and changes.get("is_active") is False:
            raise RoleInUse(f"Role '{role.name}' is the default role; make another role the default first")

        if "name" in changes:
            validate_role_name(changes["name"])
        if "description" in changes:
            validate_description(changes["description"])
        if "permissions" in changes:
            changes["permissions"] = validate_permissions(changes["permissions"])

        updated = self._storage.update_role(role_id, RoleUpdate(**changes))
        if updated is None:
            raise RoleNotFound(f"Role {role_id} not found")

        self._security_logger.log(
            SecurityEvent.ROLE_CHANGED,
            details={"role_id": str(role_id), "fields": sorted(changes)},
        )
        return updated

    def add_permissions(self, role_id: UUID, permissions: list[str]) -> Role:
        role = self.get_role(role_id)
        return self.mutate(role_id, RoleUpdate(permissions=role.permissions + list(permissions)))

    def remove_permissions(self, role_id: UUID, permissions: list[str]) -> Role:
        role = self.get_role(role_id)
        remaining = [p for p in role.permissions if p not in set(permissions)]
        return self.mutate(role_id, RoleUpdate(permissions=remaining))

    def delete(self, role_id: UUID) -> None:
        """
        Delete a non-system role that no user references.

        Raises:
            ImmutableRoleViolation: Role is a system role.
            RoleInUse: Role is the default or still assigned.
        """
        role = self.get_role(role_id)
        if role.is_system:
            raise ImmutableRoleViolation(f"System role '{role.name}' cannot be deleted")
        if role.is_default:
            raise RoleInUse(f"Role '{role.name}' is the default role")

        count = self._storage.count_users_with_role(role_id)
        if count > 0:
            raise RoleInUse(f"Role '{role.name}' is assigned to {count} user(s)")

        # Conditional delete re-checks, in case a user was assigned meanwhile
        if not self._storage.delete_role(role_id):
            raise RoleInUse(f"Role '{role.name}' is assigned to at least one user")

        logger.info(f"Deleted role '{role.name}' ({role_id})")
        self._security_logger.log(
            SecurityEvent.ROLE_CHANGED,
            details={"role_id": str(role_id), "deleted": True},
        )

    def assign_role(self, user_id: UUID, role_id: UUID) -> User:
        """
        Point the user at role_id.

        Raises:
            RoleNotFound: Role missing or inactive.
            UserNotFound: User missing.
        """
        role = self.get_role(role_id)
        if not role.is_active:
            raise RoleNotFound(f"Role '{role.name}' is inactive")

        user = self._storage.update_user(user_id, UserUpdate(role_id=role_id))
        if user is None:
            raise UserNotFound(f"User {user_id} not found")

        self._security_logger.log(
            SecurityEvent.ROLE_ASSIGNED,
            email=user.email,
            user_id=user.id,
            details={"role": role.name},
        )
        return user

    def unassign_role(self, user_id: UUID, role_id: UUID) -> User:
        """Take role_id away from the user, falling back to the default role."""
        user = self._storage.get_user(user_id)
        if user is None:
            raise UserNotFound(f"User {user_id} not found")
        if user.role_id != role_id:
            raise IdentityError("User does not have this role")

        default = self._storage.get_default_role()
        if default is None or default.id == role_id:
            raise IdentityError("No other default role to fall back to")
        return self.assign_role(user_id, default.id)
