"""Unit tests for ged.engine.errors — Error hierarchy & serialization."""

import json

import pytest

from ged.engine.errors import (
    GedConfigError,
    GedConflictError,
    GedError,
    GedNotFoundError,
    GedPermissionError,
    GedStorageError,
    GedValidationError,
)


class TestGedError:
    """Base error class tests."""

    def test_basic_creation(self):
        err = GedError("something broke")
        assert err.message == "something broke"
        assert str(err) == "something broke"
        assert err.error_type == "GedError"
        assert err.entity is None
        assert err.entity_id is None
        assert err.field is None

    def test_context_fields(self):
        err = GedError("fail", entity="folder", entity_id=7, field="code", extra="x")
        assert err.entity == "folder"
        assert err.entity_id == 7
        assert err.field == "code"
        assert err.context["extra"] == "x"

    def test_to_dict(self):
        err = GedError("fail", entity="mail", entity_id=3, reason="boom")
        d = err.to_dict()
        assert d["error_type"] == "GedError"
        assert d["message"] == "fail"
        assert d["entity"] == "mail"
        assert d["entity_id"] == 3
        assert d["context"] == {"reason": "boom"}
        assert "timestamp" in d

    def test_to_json(self):
        parsed = json.loads(GedError("fail").to_json())
        assert parsed["error_type"] == "GedError"
        assert parsed["message"] == "fail"

    def test_repr(self):
        r = repr(GedError("fail", entity="document", entity_id=12, field="title"))
        assert "GedError: fail" in r
        assert "entity=document" in r
        assert "entity_id=12" in r
        assert "field=title" in r


class TestSubclasses:
    @pytest.mark.parametrize("cls", [
        GedValidationError,
        GedPermissionError,
        GedConflictError,
        GedNotFoundError,
        GedStorageError,
        GedConfigError,
    ])
    def test_all_inherit_from_base(self, cls):
        err = cls("x")
        assert isinstance(err, GedError)
        assert err.error_type == cls.__name__

    def test_validation_errors_list(self):
        err = GedValidationError("bad", validation_errors=[{"loc": ["code"]}])
        assert err.to_dict()["validation_errors"] == [{"loc": ["code"]}]

    def test_permission_context(self):
        err = GedPermissionError("denied", user_id=4, authority_level=2, required_level=0)
        d = err.to_dict()
        assert d["user_id"] == 4
        assert d["authority_level"] == 2
        assert d["required_level"] == 0

    def test_conflict_current_status(self):
        err = GedConflictError("not processed", entity="mail", current_status="new")
        assert err.current_status == "new"
        assert err.to_dict()["current_status"] == "new"

    def test_storage_operation(self):
        err = GedStorageError("copy failed", operation="store")
        assert err.operation == "store"

    def test_catchable_as_base(self):
        with pytest.raises(GedError):
            raise GedNotFoundError("missing", entity="folder", entity_id=99)
