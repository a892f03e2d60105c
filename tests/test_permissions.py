"""Unit tests for ged.security.permissions and ged.engine.context — authority checks."""

import pytest

from ged.engine.context import ActingUser
from ged.engine.errors import GedPermissionError
from ged.engine.logging import FileLogger
from ged.security.permissions import (
    can_access_folder,
    can_create_folder,
    can_delete_folder,
    is_administrator,
    require_authority,
)


def _user(level, **kwargs):
    return ActingUser(user_id=7, username=f"user{level}", authority_level=level, **kwargs)


class TestActingUser:
    def test_is_admin(self):
        assert _user(0).is_admin
        assert not _user(1).is_admin
        assert not _user(2).is_admin

    def test_to_dict(self):
        user = _user(1, role="manager", full_name="Marc Martin")
        assert user.to_dict() == {
            "user_id": 7,
            "username": "user1",
            "authority_level": 1,
            "role": "manager",
        }


class TestPredicates:
    @pytest.mark.parametrize("level, admin, create, delete", [
        (0, True, True, True),
        (1, False, True, False),
        (2, False, False, False),
        (5, False, False, False),
    ])
    def test_levels(self, level, admin, create, delete):
        user = _user(level)
        assert is_administrator(user) is admin
        assert can_create_folder(user) is create
        assert can_delete_folder(user) is delete

    def test_confidential_folder_is_admin_only(self):
        assert can_access_folder(_user(0), "CONFIDENTIEL", "CONFIDENTIEL")
        assert not can_access_folder(_user(1), "confidentiel", "CONFIDENTIEL")
        assert not can_access_folder(_user(2), "CONFIDENTIEL", "confidentiel")

    def test_other_folders_are_open(self):
        assert can_access_folder(_user(2), "OPS", "CONFIDENTIEL")
        assert can_access_folder(_user(2), None, "CONFIDENTIEL")


class TestRequireAuthority:
    def test_allowed(self, audit, tmp_path):
        require_authority(_user(1), 1, "create_folder", "folders", audit)
        audit.flush()
        assert FileLogger(log_dir=str(tmp_path / "logs")).query("folders", "security") == []

    def test_denied_raises_and_audits(self, audit, tmp_path):
        with pytest.raises(GedPermissionError) as exc:
            require_authority(_user(2), 0, "delete_folder", "folders", audit, entity="folder", entity_id=3)
        err = exc.value
        assert (err.user_id, err.authority_level, err.required_level) == (7, 2, 0)
        assert err.entity_id == 3
        assert "delete folder" in err.message

        audit.flush()
        rows = FileLogger(log_dir=str(tmp_path / "logs")).query("folders", "security")
        assert rows[0]["action"] == "delete_folder_denied"
        assert rows[0]["required_level"] == 0

    def test_without_audit_queue(self):
        with pytest.raises(GedPermissionError):
            require_authority(_user(3), 1, "purge_document", "documents")
