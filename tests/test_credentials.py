"""Tests for tenant access-token sealing."""

from unittest.mock import MagicMock

import pytest

from flowrelay.domain.models import Tenant
from flowrelay.infra.credentials import (
    CredentialError,
    get_access_token,
    open_token,
    seal_token,
)
from flowrelay.infra.repositories import tenants_repository

KEY_HEX = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
OTHER_KEY_HEX = "ff" * 32


class TestSealing:
    def test_seal_then_open(self, monkeypatch):
        monkeypatch.setenv("CREDENTIALS_KEY", KEY_HEX)

        sealed = seal_token("EAAG-token")

        assert sealed != "EAAG-token"
        assert open_token(sealed) == "EAAG-token"

    def test_nonce_is_random(self, monkeypatch):
        monkeypatch.setenv("CREDENTIALS_KEY", KEY_HEX)

        assert seal_token("same") != seal_token("same")

    def test_wrong_key_raises_credential_error(self, monkeypatch):
        monkeypatch.setenv("CREDENTIALS_KEY", KEY_HEX)
        sealed = seal_token("EAAG-token")
        monkeypatch.setenv("CREDENTIALS_KEY", OTHER_KEY_HEX)

        with pytest.raises(CredentialError):
            open_token(sealed)

    def test_without_key_values_pass_through(self):
        assert seal_token("plain") == "plain"
        assert open_token("plain") == "plain"

    @pytest.mark.parametrize("bad_key", ["abc", "zz" * 32, "00" * 16])
    def test_malformed_key_rejected(self, monkeypatch, bad_key):
        monkeypatch.setenv("CREDENTIALS_KEY", bad_key)

        with pytest.raises(CredentialError, match="CREDENTIALS_KEY"):
            seal_token("x")


class TestGetAccessToken:
    def test_unset(self):
        assert get_access_token(None) is None
        assert get_access_token(Tenant(id="t", phone_number_id="p")) is None

    def test_decrypts(self, monkeypatch):
        monkeypatch.setenv("CREDENTIALS_KEY", KEY_HEX)
        tenant = Tenant(id="t", phone_number_id="p", access_token_enc=seal_token("EAAG"))

        assert get_access_token(tenant) == "EAAG"


class TestStoringAccessToken:
    def test_token_is_sealed_before_it_reaches_the_database(self, monkeypatch):
        monkeypatch.setenv("CREDENTIALS_KEY", KEY_HEX)
        cur = MagicMock(rowcount=1)

        assert tenants_repository.set_access_token(cur, "t", "EAAG-token") is True

        sql, (stored, tenant_id) = cur.execute.call_args.args
        assert "UPDATE tenants" in sql
        assert tenant_id == "t"
        assert stored != "EAAG-token"
        assert open_token(stored) == "EAAG-token"

    def test_unknown_tenant(self):
        cur = MagicMock(rowcount=0)

        assert tenants_repository.set_access_token(cur, "missing", "EAAG") is False
