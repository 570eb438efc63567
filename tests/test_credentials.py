"""Tests for Grafana credential loading."""

from pathlib import Path

import pytest

from orgmapper.credentials import (
    FORBIDDEN_CREDENTIAL_ENV_VARS,
    MAX_CREDENTIALS_FILE_SIZE_BYTES,
    CredentialError,
    Credentials,
    load_credentials,
    parse_credentials,
    reject_inline_credentials,
)


class TestParseCredentials:
    """Tests for parse_credentials."""

    def test_token(self) -> None:
        """Plain content is a bearer token, whitespace trimmed."""
        credentials = parse_credentials(b"  glsa_abc123\n")
        assert credentials.token == "glsa_abc123"
        assert credentials.is_basic_auth is False

    def test_basic_auth_json(self) -> None:
        """JSON with username and password selects basic auth."""
        credentials = parse_credentials(b'{"username": "admin", "password": "pw"}')
        assert credentials.is_basic_auth is True
        assert credentials.username == "admin"
        assert credentials.password == "pw"

    def test_incomplete_json_is_token(self) -> None:
        """JSON missing the password is used verbatim as a token."""
        raw = b'{"username": "admin", "password": ""}'
        credentials = parse_credentials(raw)
        assert credentials.is_basic_auth is False
        assert credentials.token == raw.decode()

    def test_empty(self) -> None:
        """Empty content is rejected."""
        with pytest.raises(CredentialError):
            parse_credentials(b"   \n")

    def test_repr_hides_secrets(self) -> None:
        """Secrets never show up in repr."""
        assert "hunter2" not in repr(Credentials(username="admin", password="hunter2"))
        assert "glsa_x" not in repr(Credentials(token="glsa_x"))

    def test_credentials_require_content(self) -> None:
        """A Credentials value needs a token or a full username/password pair."""
        with pytest.raises(CredentialError):
            Credentials(username="admin")


class TestLoadCredentials:
    """Tests for load_credentials."""

    def test_load_from_file(self, tmp_path: Path) -> None:
        """Credentials are read from the file."""
        path = tmp_path / "credentials"
        path.write_text("token-value\n")

        assert load_credentials(path).token == "token-value"

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file raises CredentialError."""
        with pytest.raises(CredentialError) as exc_info:
            load_credentials(tmp_path / "missing")
        assert "cannot read credentials file" in str(exc_info.value)

    def test_oversized_file(self, tmp_path: Path) -> None:
        """Files above the size limit are refused without reading them."""
        path = tmp_path / "credentials"
        path.write_bytes(b"x" * (MAX_CREDENTIALS_FILE_SIZE_BYTES + 1))

        with pytest.raises(CredentialError) as exc_info:
            load_credentials(path)
        assert "exceeds" in str(exc_info.value)


class TestRejectInlineCredentials:
    """Tests for inline credential detection."""

    def test_clean_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """No inline credentials passes."""
        for env_var in FORBIDDEN_CREDENTIAL_ENV_VARS:
            monkeypatch.delenv(env_var, raising=False)

        reject_inline_credentials()

    @pytest.mark.parametrize("env_var", FORBIDDEN_CREDENTIAL_ENV_VARS)
    def test_inline_credentials_rejected(
        self, monkeypatch: pytest.MonkeyPatch, env_var: str
    ) -> None:
        """Each forbidden variable is rejected by name."""
        for other in FORBIDDEN_CREDENTIAL_ENV_VARS:
            monkeypatch.delenv(other, raising=False)
        monkeypatch.setenv(env_var, "secret")

        with pytest.raises(CredentialError) as exc_info:
            reject_inline_credentials()
        assert env_var in str(exc_info.value)
        assert "secret" not in str(exc_info.value)
