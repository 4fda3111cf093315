"""Tests for application-level exception types."""

import pytest

from scenemedia.core.exceptions import (
    AppError,
    BackupFormatError,
    EntityNotFoundError,
    InvalidAssetKindError,
    StorageError,
)
from scenemedia.db.models import AssetKind


class TestAppError:
    def test_message_and_detail(self):
        err = AppError("something broke", detail="user-friendly msg")
        assert str(err) == "something broke"
        assert err.detail == "user-friendly msg"

    def test_detail_defaults_to_message(self):
        err = AppError("fallback message")
        assert err.detail == "fallback message"


class TestDomainExceptions:
    @pytest.mark.parametrize("exc_class", [StorageError, BackupFormatError, InvalidAssetKindError, EntityNotFoundError])
    def test_inherits_app_error(self, exc_class):
        assert issubclass(exc_class, AppError)

    def test_invalid_asset_kind_keeps_value(self):
        with pytest.raises(InvalidAssetKindError) as info:
            AssetKind.parse("gif")
        assert info.value.value == "gif"
        assert info.value.detail == "unknown asset kind"
        assert "gif" in str(info.value)

    def test_invalid_asset_kind_is_not_value_error(self):
        assert not issubclass(InvalidAssetKindError, ValueError)


class TestEntityNotFoundError:
    def test_attributes(self):
        err = EntityNotFoundError("script", 42)
        assert err.entity_type == "script"
        assert err.entity_id == 42
        assert str(err) == "script not found: 42"
        assert err.detail == "script not found"
