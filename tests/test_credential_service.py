"""
Tests for the credential store and the access-token refresher.
"""

from datetime import datetime, timedelta, UTC
from unittest.mock import patch

import pytest
import requests

from conftest import USER_ID, make_response, store_credential, store_undecryptable_credential
from crypto import TokenDecryptionError
from database import SessionLocal
from errors import ExternalApiFailure
from models import DriveConnection
from services.credential_service import (
    delete_credential,
    get_connection_info,
    get_credential,
    get_valid_access_token,
    update_access_token,
)


class TestCredentialStore:
    def test_tokens_encrypted_at_rest(self, db):
        store_credential(db, access_token="plain-access", refresh_token="plain-refresh")
        row = db.get(DriveConnection, USER_ID)
        assert row.encrypted_access_token != "plain-access"
        assert row.encrypted_refresh_token != "plain-refresh"

        credential = get_credential(db, USER_ID)
        assert credential.access_token == "plain-access"
        assert credential.refresh_token == "plain-refresh"
        assert credential.token_expires_at.tzinfo is not None

    def test_missing_credential_is_none(self, db):
        assert get_credential(db, "nobody") is None

    def test_upsert_replaces_existing_row(self, db):
        store_credential(db, access_token="first", email="a@example.com")
        store_credential(db, access_token="second", email="b@example.com")

        assert db.query(DriveConnection).filter_by(user_id=USER_ID).count() == 1
        credential = get_credential(db, USER_ID)
        assert credential.access_token == "second"
        assert credential.email == "b@example.com"

    def test_empty_refresh_token_round_trips(self, db):
        store_credential(db, refresh_token="")
        assert get_credential(db, USER_ID).refresh_token == ""

    def test_update_missing_row_reports_false(self, db):
        assert update_access_token(
            db,
            "nobody",
            access_token="x",
            token_expires_at=datetime.now(UTC),
        ) is False

    def test_delete_is_idempotent(self, db):
        store_credential(db)
        assert delete_credential(db, USER_ID) is True
        assert delete_credential(db, USER_ID) is False

    def test_upsert_returns_stored_values(self, db):
        credential = store_credential(db, access_token="plain-access", refresh_token="", email=None)
        assert credential.user_id == USER_ID
        assert credential.access_token == "plain-access"
        assert credential.refresh_token == ""
        assert credential.email is None
        assert credential.connected_at.tzinfo is not None

    def test_upsert_refreshes_rows_already_loaded(self, db):
        store_credential(db, access_token="first")
        assert get_credential(db, USER_ID).access_token == "first"

        store_credential(db, access_token="second")
        assert get_credential(db, USER_ID).access_token == "second"

    def test_upsert_from_concurrent_session_keeps_one_row(self, db):
        store_credential(db, access_token="first")
        with SessionLocal() as other:
            store_credential(other, access_token="from-other-session", email="c@example.com")

        db.expire_all()
        assert db.query(DriveConnection).filter_by(user_id=USER_ID).count() == 1
        credential = get_credential(db, USER_ID)
        assert credential.access_token == "from-other-session"
        assert credential.email == "c@example.com"

    def test_undecryptable_row_raises(self, db):
        store_undecryptable_credential(db)
        with pytest.raises(TokenDecryptionError):
            get_credential(db, USER_ID)

    def test_connection_info_does_not_decrypt(self, db):
        store_undecryptable_credential(db, email="student@example.com")
        info = get_connection_info(db, USER_ID)
        assert info["email"] == "student@example.com"
        assert info["connected_at"].tzinfo is not None
        assert get_connection_info(db, "nobody") is None


class TestGetValidAccessToken:
    def test_not_connected_returns_none(self, db):
        with patch("requests.post") as mock_post:
            assert get_valid_access_token(db, USER_ID) is None
        mock_post.assert_not_called()

    def test_fresh_token_returned_without_network(self, db):
        store_credential(db, expires_in=3600, access_token="cached-access")
        with patch("requests.post") as mock_post:
            assert get_valid_access_token(db, USER_ID) == "cached-access"
        mock_post.assert_not_called()

    def test_token_just_outside_buffer_is_reused(self, db):
        store_credential(db, expires_in=6 * 60)
        with patch("requests.post") as mock_post:
            assert get_valid_access_token(db, USER_ID) == "cached-access"
        mock_post.assert_not_called()

    @pytest.mark.parametrize("expires_in", [-10, 0, 60, 4 * 60])
    def test_expiring_token_is_refreshed(self, db, expires_in):
        store_credential(db, expires_in=expires_in, refresh_token="stored-refresh")
        before = get_credential(db, USER_ID)

        with patch("requests.post", return_value=make_response(200, {
            "access_token": "new-access",
            "expires_in": 3600,
            "token_type": "Bearer",
        })) as mock_post:
            assert get_valid_access_token(db, USER_ID) == "new-access"

        assert mock_post.call_count == 1
        sent = mock_post.call_args.kwargs["data"]
        assert sent["grant_type"] == "refresh_token"
        assert sent["refresh_token"] == "stored-refresh"

        db.expire_all()
        after = get_credential(db, USER_ID)
        assert after.access_token == "new-access"
        assert after.refresh_token == "stored-refresh"
        assert after.token_expires_at > before.token_expires_at
        assert after.token_expires_at > datetime.now(UTC) + timedelta(minutes=55)

    def test_rotated_refresh_token_is_stored(self, db):
        store_credential(db, expires_in=-10)
        with patch("requests.post", return_value=make_response(200, {
            "access_token": "new-access",
            "refresh_token": "rotated-refresh",
            "expires_in": 3600,
        })):
            get_valid_access_token(db, USER_ID)
        db.expire_all()
        assert get_credential(db, USER_ID).refresh_token == "rotated-refresh"

    @pytest.mark.parametrize("status_code, body", [
        (400, {"error": "invalid_grant", "error_description": "Token has been expired or revoked."}),
        (401, {"error": "unauthorized_client"}),
        (200, {"error": "invalid_grant"}),
    ])
    def test_rejected_refresh_deletes_credential(self, db, status_code, body):
        store_credential(db, expires_in=-10)
        with patch("requests.post", return_value=make_response(status_code, body)) as mock_post:
            assert get_valid_access_token(db, USER_ID) is None
        assert mock_post.call_count == 1
        db.expire_all()
        assert get_credential(db, USER_ID) is None

    def test_missing_refresh_token_drops_connection_without_network(self, db):
        store_credential(db, expires_in=-10, refresh_token="")
        with patch("requests.post") as mock_post:
            assert get_valid_access_token(db, USER_ID) is None
        mock_post.assert_not_called()
        assert get_credential(db, USER_ID) is None

    def test_unreachable_google_keeps_credential(self, db):
        store_credential(db, expires_in=-10)
        with patch("requests.post", side_effect=requests.ConnectionError("boom")):
            with pytest.raises(ExternalApiFailure):
                get_valid_access_token(db, USER_ID)
        db.expire_all()
        assert get_credential(db, USER_ID) is not None

    def test_undecryptable_credential_dropped_without_network(self, db):
        store_undecryptable_credential(db)
        with patch("requests.post") as mock_post:
            assert get_valid_access_token(db, USER_ID) is None
        mock_post.assert_not_called()
        db.expire_all()
        assert db.get(DriveConnection, USER_ID) is None
