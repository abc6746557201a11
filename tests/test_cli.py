"""Tests for the typer CLI surface (local commands only, no network)."""

from __future__ import annotations

import pytest
from keyring.errors import PasswordDeleteError
from typer.testing import CliRunner

from aidir import cli, config as config_module
from aidir.cli import app

runner = CliRunner()


class FakeKeyring:
    def __init__(self):
        self.values: dict[tuple[str, str], str] = {}

    def get_password(self, service, name):
        return self.values.get((service, name))

    def set_password(self, service, name, value):
        self.values[(service, name)] = value

    def delete_password(self, service, name):
        if (service, name) not in self.values:
            raise PasswordDeleteError("not found")
        del self.values[(service, name)]


@pytest.fixture
def fake_keyring(monkeypatch) -> FakeKeyring:
    fake = FakeKeyring()
    monkeypatch.setattr(cli, "keyring", fake)
    monkeypatch.setattr(config_module, "keyring", fake)
    return fake


@pytest.fixture
def seeded_db(tmp_db, db_path):
    tmp_db.conn.execute(
        "INSERT INTO people (name, identity_key, description) VALUES (?, ?, ?)",
        ("Jane Q. Researcher", "Q1", "computer scientist"),
    )
    tmp_db.conn.commit()
    return db_path


class TestConfigCommands:
    def test_set_then_get_masks_value(self, fake_keyring):
        result = runner.invoke(app, ["config", "set-key", "github_token", "ghp_secret"])
        assert result.exit_code == 0
        assert fake_keyring.values[("aidir", "github_token")] == "ghp_secret"

        result = runner.invoke(app, ["config", "get-key", "github_token"])
        assert result.exit_code == 0
        assert "ghp_******" in result.output
        assert "secret" not in result.output

    def test_unknown_credential_rejected(self, fake_keyring):
        result = runner.invoke(app, ["config", "set-key", "password", "x"])
        assert result.exit_code == 1
        assert "unknown credential" in result.output

    def test_get_missing_key(self, fake_keyring):
        result = runner.invoke(app, ["config", "get-key", "exa_api_key"])
        assert result.exit_code == 1

    def test_remove_missing_key_is_a_warning(self, fake_keyring):
        result = runner.invoke(app, ["config", "remove-key", "exa_api_key"])
        assert result.exit_code == 0
        assert "Nothing to remove" in result.output


class TestLocalCommands:
    def test_list(self, fake_keyring, seeded_db):
        result = runner.invoke(app, ["--db", str(seeded_db), "list"])
        assert result.exit_code == 0
        assert "Jane Q. Researcher" in result.output
        assert "pending: 1" in result.output

    def test_show(self, fake_keyring, seeded_db):
        result = runner.invoke(app, ["--db", str(seeded_db), "show", "1"])
        assert result.exit_code == 0
        assert "Jane Q. Researcher" in result.output
        assert "Q1" in result.output

    def test_show_unknown_person(self, fake_keyring, seeded_db):
        result = runner.invoke(app, ["--db", str(seeded_db), "show", "99"])
        assert result.exit_code == 1

    def test_score_requires_target(self, fake_keyring, seeded_db):
        result = runner.invoke(app, ["--db", str(seeded_db), "score"])
        assert result.exit_code == 1
