"""Tests for migrations/env_helpers.py DSN-to-URL conversion."""

from __future__ import annotations

import os
import sys

import pytest

# Make migrations importable without alembic context
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from migrations.env_helpers import get_database_url, libpq_dsn_to_url  # noqa: E402


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("DB_PASSWORD", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)


class TestLibpqDsnToUrl:
    def test_unix_socket(self):
        dsn = "dbname=fretebot user=app password=s3cret host=/var/run/postgresql"
        assert libpq_dsn_to_url(dsn) == (
            "postgresql+psycopg2://app:s3cret@/fretebot?host=%2Fvar%2Frun%2Fpostgresql"
        )

    def test_tcp_host(self):
        dsn = "dbname=fretebot user=admin password=pw host=localhost port=5432"
        assert libpq_dsn_to_url(dsn) == "postgresql+psycopg2://admin:pw@localhost:5432/fretebot"

    def test_default_port(self):
        dsn = "dbname=db user=u password=p host=myhost"
        assert libpq_dsn_to_url(dsn) == "postgresql+psycopg2://u:p@myhost:5432/db"

    def test_special_chars_encoded(self):
        dsn = "dbname=db user=u@domain password=p@ss=word host=h port=5432"
        result = libpq_dsn_to_url(dsn)
        assert "u%40domain" in result
        assert "p%40ss%3Dword" in result

    def test_quoted_password_with_spaces(self):
        dsn = "dbname=db user=u password='p@ss w0rd' host=h port=5432"
        assert "p%40ss+w0rd" in libpq_dsn_to_url(dsn)

    def test_db_password_env_fallback(self, monkeypatch):
        monkeypatch.setenv("DB_PASSWORD", "from-env")
        dsn = "dbname=db user=u host=h port=5432"
        assert libpq_dsn_to_url(dsn) == "postgresql+psycopg2://u:from-env@h:5432/db"

    def test_no_password_at_all(self):
        dsn = "dbname=db user=u host=h port=5432"
        assert libpq_dsn_to_url(dsn) == "postgresql+psycopg2://u@h:5432/db"


class TestGetDatabaseUrl:
    def test_missing_url(self):
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            get_database_url()

    @pytest.mark.parametrize("scheme", ["postgres://", "postgresql://"])
    def test_scheme_is_rewritten_for_psycopg2(self, monkeypatch, scheme):
        monkeypatch.setenv("DATABASE_URL", f"{scheme}u:p@h:5432/db")
        assert get_database_url() == "postgresql+psycopg2://u:p@h:5432/db"

    def test_password_injected_into_url(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://u@h:5432/db")
        monkeypatch.setenv("DB_PASSWORD", "from-env")
        assert get_database_url() == "postgresql+psycopg2://u:from-env@h:5432/db"

    def test_url_password_wins(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:mine@h/db")
        monkeypatch.setenv("DB_PASSWORD", "from-env")
        assert get_database_url() == "postgresql+psycopg2://u:mine@h/db"

    def test_libpq_dsn(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "dbname=db user=u password=p host=h")
        assert get_database_url() == "postgresql+psycopg2://u:p@h:5432/db"
