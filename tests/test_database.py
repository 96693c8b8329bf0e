"""
Tests for schema setup and the request-scoped session dependency.
"""

from unittest.mock import patch

from sqlalchemy import inspect

from database import Base, engine, get_db, init_db


class TestInitDb:
    def test_creates_connection_and_state_tables(self):
        Base.metadata.drop_all(bind=engine)
        init_db()
        assert {"drive_connections", "oauth_states"} <= set(inspect(engine).get_table_names())

    def test_is_idempotent(self):
        init_db()
        init_db()
        assert "drive_connections" in inspect(engine).get_table_names()


class TestGetDb:
    def test_session_closed_after_request(self):
        dependency = get_db()
        session = next(dependency)
        with patch.object(session, "close", wraps=session.close) as mock_close:
            dependency.close()
        mock_close.assert_called_once()
