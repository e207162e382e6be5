"""
Tests for the user directory and request contexts
"""

import pytest

from bms_core.storage import InMemoryStorage
from bms_core.identity import UserDirectory, UserRole, RequestContext, require_privileged
from bms_core.errors import UserNotFound, UserLocked, ValidationFailed, InsufficientRole, AuthorizationDenied


class TestUserDirectory:

    def setup_method(self):
        """Set up test fixtures"""
        self.directory = UserDirectory(InMemoryStorage())

    def test_register_and_resolve(self):
        user = self.directory.register("alice", "alice@example.com", full_name="Alice Moreau")

        resolved = self.directory.resolve("alice")

        assert resolved.user_id == user.id
        assert resolved.email == "alice@example.com"
        assert resolved.role == UserRole.CUSTOMER
        assert not resolved.is_admin

    def test_duplicate_username(self):
        self.directory.register("alice", "alice@example.com")
        with pytest.raises(ValidationFailed):
            self.directory.register("alice", "other@example.com")

    def test_unknown_user(self):
        with pytest.raises(UserNotFound):
            self.directory.resolve("ghost")

    def test_locked_user_is_denied(self):
        user = self.directory.register("alice", "alice@example.com")
        assert self.directory.lock_user(user.id)

        with pytest.raises(AuthorizationDenied) as exc_info:
            self.directory.resolve("alice")
        assert isinstance(exc_info.value, UserLocked)

        self.directory.unlock_user(user.id)
        assert self.directory.resolve("alice").id == user.id
        assert not self.directory.lock_user("missing")

    def test_context_for(self):
        self.directory.register("root", "root@example.com", role=UserRole.ADMIN)

        context = self.directory.context_for("root", client_ip="192.0.2.7")

        assert context.is_privileged
        assert context.username == "root"
        assert context.client_ip == "192.0.2.7"

    def test_list_users(self):
        self.directory.register("a", "a@example.com")
        self.directory.register("b", "b@example.com")
        assert {u.username for u in self.directory.list_users()} == {"a", "b"}


class TestRequirePrivileged:

    def test_customer_rejected(self):
        context = RequestContext("u1", "alice", UserRole.CUSTOMER)
        with pytest.raises(InsufficientRole):
            require_privileged(context, "freeze accounts")

    def test_system_context_is_privileged(self):
        require_privileged(RequestContext.system(), "expire pending transfers")
