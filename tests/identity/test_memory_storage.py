"""Tests for MemoryIdentityStorage - the in-process adapter contract."""

import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from identity.exceptions import EmailAlreadyRegistered, RoleInUse, RoleNameTaken
from identity.types import RoleUpdate, TokenKind, TokenRecord, UserUpdate

HASH = "$2b$04$" + "x" * 53


@pytest.fixture
def role(storage):
    return storage.create_role("member", ["auth:login"])


@pytest.fixture
def member(storage, role):
    return storage.create_user("Erin@Example.com", HASH, role.id)


def make_token(owner_id, now, value="d" * 64, kind=TokenKind.REFRESH, ttl=timedelta(hours=1)):
    return TokenRecord(
        id=uuid.uuid4(), owner_id=owner_id, kind=kind, value=value,
        issued_at=now, expires_at=now + ttl, revoked=False,
    )


class TestUsers:
    def test_email_stored_lowercase(self, member):
        assert member.email == "erin@example.com"

    def test_timestamps_follow_injected_clock(self, member, role, clock):
        assert member.created_at == clock.now
        assert role.created_at == clock.now

    def test_lookup_case_insensitive(self, storage, member):
        assert storage.get_user_by_email("ERIN@example.com").id == member.id

    def test_duplicate_email_rejected(self, storage, member, role):
        with pytest.raises(EmailAlreadyRegistered):
            storage.create_user("erin@example.com", HASH, role.id)

    def test_deleted_user_releases_email(self, storage, member, role):
        storage.update_user(member.id, UserUpdate(is_deleted=True))

        assert storage.get_user_by_email("erin@example.com") is None
        assert storage.get_user(member.id).is_deleted
        storage.create_user("erin@example.com", HASH, role.id)

    def test_returned_records_are_copies(self, storage, member):
        member.failed_attempts = 99
        assert storage.get_user(member.id).failed_attempts == 0

    def test_update_missing_user(self, storage):
        assert storage.update_user(uuid.uuid4(), UserUpdate(is_active=False)) is None

    def test_count_includes_deleted_users(self, storage, member, role):
        storage.update_user(member.id, UserUpdate(is_deleted=True))
        assert storage.count_users_with_role(role.id) == 1


class TestFailedLoginCounter:
    def test_lock_set_at_threshold(self, storage, member, clock):
        lock_until = clock.now + timedelta(hours=2)
        for _ in range(3):
            updated = storage.record_failed_login(member.id, clock.now, threshold=3, lock_until=lock_until)
        assert updated.failed_attempts == 3
        assert updated.locked_until == lock_until

    def test_success_refused_while_locked(self, storage, member, clock):
        lock_until = clock.now + timedelta(hours=2)
        storage.record_failed_login(member.id, clock.now, threshold=1, lock_until=lock_until)

        assert storage.record_successful_login(member.id, clock.now) is None
        assert storage.get_user(member.id).locked_until == lock_until

        updated = storage.record_successful_login(member.id, lock_until)
        assert updated.failed_attempts == 0
        assert updated.locked_until is None

    def test_concurrent_increments(self, storage, member, clock):
        workers = 20
        barrier = threading.Barrier(workers)

        def fail(_):
            barrier.wait()
            storage.record_failed_login(member.id, clock.now, threshold=100, lock_until=clock.now)

        with ThreadPoolExecutor(max_workers=workers) as pool:
            list(pool.map(fail, range(workers)))

        assert storage.get_user(member.id).failed_attempts == workers


class TestRoles:
    def test_duplicate_name_rejected(self, storage, role):
        with pytest.raises(RoleNameTaken):
            storage.create_role("member", [])

    def test_rename_to_taken_name_rejected(self, storage, role):
        other = storage.create_role("guest", [])
        with pytest.raises(RoleNameTaken):
            storage.update_role(other.id, RoleUpdate(name="member"))

    def test_default_role_cannot_be_deactivated(self, storage, role):
        storage.set_default_role(role.id)
        assert storage.get_default_role().id == role.id

        with pytest.raises(RoleInUse):
            storage.update_role(role.id, RoleUpdate(is_active=False))
        assert storage.get_default_role().id == role.id

    def test_inactive_role_cannot_become_default(self, storage, role):
        storage.set_default_role(role.id)
        trial = storage.create_role("trial", [], is_active=False)

        assert storage.set_default_role(trial.id) is None
        assert storage.get_default_role().id == role.id
        assert not storage.get_role(trial.id).is_default

    def test_set_default_unknown_role(self, storage, role):
        storage.set_default_role(role.id)
        assert storage.set_default_role(uuid.uuid4()) is None
        assert storage.get_role(role.id).is_default

    def test_concurrent_set_default_leaves_one(self, storage):
        roles = [storage.create_role(f"role-{i}", []) for i in range(8)]
        barrier = threading.Barrier(len(roles))

        def make_default(r):
            barrier.wait()
            storage.set_default_role(r.id)

        with ThreadPoolExecutor(max_workers=len(roles)) as pool:
            list(pool.map(make_default, roles))

        assert sum(r.is_default for r in storage.list_roles()) == 1

    def test_delete_conditions(self, storage, role, member):
        system = storage.create_role("root", [], is_system=True)
        unused = storage.create_role("unused", [])

        assert storage.delete_role(role.id) is False
        assert storage.delete_role(system.id) is False
        assert storage.delete_role(unused.id) is True
        assert storage.get_role(unused.id) is None

    def test_list_sorted_by_name(self, storage, role):
        storage.create_role("aaa", [])
        assert [r.name for r in storage.list_roles()] == ["aaa", "member"]


class TestTokens:
    def test_duplicate_value_rejected(self, storage, member, clock):
        storage.create_token(make_token(member.id, clock.now))
        with pytest.raises(ValueError):
            storage.create_token(make_token(member.id, clock.now))

    def test_claim_checks_kind_and_expiry(self, storage, member, clock):
        storage.create_token(make_token(member.id, clock.now, kind=TokenKind.PASSWORD_RESET))

        assert storage.claim_token("d" * 64, TokenKind.EMAIL_VERIFICATION, clock.now, consume=True) is None
        later = clock.now + timedelta(hours=1)
        assert storage.claim_token("d" * 64, TokenKind.PASSWORD_RESET, later, consume=True) is None
        assert storage.claim_token("d" * 64, TokenKind.PASSWORD_RESET, clock.now, consume=True) is not None

    def test_revoke_unknown_is_false(self, storage):
        assert storage.revoke_token("e" * 64) is False


class TestSecurityEvents:
    def test_details_copied(self, storage, clock):
        details = {"reason": "x"}
        storage.append_security_event("login_failed", "a@x.com", None, details, clock.now)
        details["reason"] = "changed"

        [event] = storage.recent_security_events()
        assert event["details"] == {"reason": "x"}
