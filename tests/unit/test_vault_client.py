"""
Unit tests for vault_client module.
"""

import pytest
from unittest.mock import MagicMock, patch
from hvac.exceptions import InvalidPath, VaultError

from library_sync.utils.vault_client import VaultClient


class TestVaultClient:
    """Test suite for VaultClient class."""

    @pytest.fixture
    def mock_hvac_client(self):
        """Mock hvac.Client for testing."""
        with patch('library_sync.utils.vault_client.hvac.Client') as mock:
            client_instance = MagicMock()
            client_instance.is_authenticated.return_value = True
            mock.return_value = client_instance
            yield mock

    @pytest.fixture
    def client(self, mock_hvac_client):
        return VaultClient(vault_url="http://test:8200", vault_token="test-token")

    def test_init_with_parameters(self, mock_hvac_client):
        client = VaultClient(vault_url="http://test-vault:8200", vault_token="test-token")

        assert client.vault_url == "http://test-vault:8200"
        assert client.mount_point == "secret"
        mock_hvac_client.assert_called_once_with(url="http://test-vault:8200", token="test-token", verify=True)

    def test_init_with_env_vars(self, mock_hvac_client, monkeypatch):
        monkeypatch.setenv("VAULT_ADDR", "http://env-vault:8200")
        monkeypatch.setenv("VAULT_TOKEN", "env-token")

        client = VaultClient()

        assert client.vault_url == "http://env-vault:8200"
        assert client.vault_token == "env-token"

    def test_init_missing_url_raises_error(self, monkeypatch):
        monkeypatch.delenv("VAULT_ADDR", raising=False)
        with pytest.raises(ValueError, match="Vault URL must be provided"):
            VaultClient(vault_token="test-token")

    def test_init_missing_token_raises_error(self, monkeypatch):
        monkeypatch.delenv("VAULT_TOKEN", raising=False)
        with pytest.raises(ValueError, match="Vault token must be provided"):
            VaultClient(vault_url="http://test:8200")

    def test_init_authentication_failure(self, mock_hvac_client):
        mock_hvac_client.return_value.is_authenticated.return_value = False

        with pytest.raises(VaultError, match="Failed to authenticate"):
            VaultClient(vault_url="http://test:8200", vault_token="bad-token")

    def test_init_unreachable_vault(self, mock_hvac_client):
        mock_hvac_client.return_value.is_authenticated.side_effect = ConnectionError("refused")

        with pytest.raises(VaultError, match="initialization failed"):
            VaultClient(vault_url="http://test:8200", vault_token="test-token")

    def test_get_secret_success(self, client, mock_hvac_client):
        mock_hvac_client.return_value.secrets.kv.v2.read_secret_version.return_value = {
            "data": {"data": {"username": "library", "password": "s3cret"}}
        }

        assert client.get_secret("postgres-credentials") == {"username": "library", "password": "s3cret"}

    def test_get_secret_invalid_path(self, client, mock_hvac_client):
        mock_hvac_client.return_value.secrets.kv.v2.read_secret_version.side_effect = InvalidPath("missing")

        with pytest.raises(InvalidPath):
            client.get_secret("nowhere")

    def test_get_secret_other_failure(self, client, mock_hvac_client):
        mock_hvac_client.return_value.secrets.kv.v2.read_secret_version.side_effect = RuntimeError("boom")

        with pytest.raises(VaultError, match="Secret retrieval failed"):
            client.get_secret("postgres-credentials")

    def test_get_secret_empty_response(self, client, mock_hvac_client):
        mock_hvac_client.return_value.secrets.kv.v2.read_secret_version.return_value = {}

        with pytest.raises(InvalidPath):
            client.get_secret("postgres-credentials")

    @pytest.mark.parametrize("database, path", [
        ("postgres", "postgres-credentials"),
        ("scylla", "scylla-credentials"),
    ])
    def test_get_database_credentials(self, client, mock_hvac_client, database, path):
        read = mock_hvac_client.return_value.secrets.kv.v2.read_secret_version
        read.return_value = {"data": {"data": {"username": "u"}}}

        assert client.get_database_credentials(database) == {"username": "u"}
        read.assert_called_once_with(path=path, mount_point="secret")

    def test_get_database_credentials_unknown_store(self, client):
        with pytest.raises(ValueError, match="Invalid database"):
            client.get_database_credentials("mysql")

    def test_health_check_healthy(self, client, mock_hvac_client):
        mock_hvac_client.return_value.sys.read_health_status.return_value = {"sealed": False}

        status = client.health_check()

        assert status.healthy
        assert status.error is None

    def test_health_check_sealed(self, client, mock_hvac_client):
        mock_hvac_client.return_value.sys.read_health_status.return_value = {"sealed": True}

        status = client.health_check()

        assert not status
        assert status.authenticated
        assert status.error == "Vault is sealed"

    def test_health_check_never_raises(self, client, mock_hvac_client):
        mock_hvac_client.return_value.sys.read_health_status.side_effect = RuntimeError("down")

        status = client.health_check()

        assert not status.healthy
        assert status.error == "down"

    def test_context_manager_closes(self, mock_hvac_client):
        with VaultClient(vault_url="http://test:8200", vault_token="t") as client:
            assert client.client is not None

        assert client.client is None
