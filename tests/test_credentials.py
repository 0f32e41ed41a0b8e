"""
Tests for token encryption and per-user credential lookup.
"""
import pytest
from cryptography.fernet import Fernet

from meeting_followup.exceptions import ConfigurationError
from meeting_followup.models import User
from meeting_followup.services import CredentialStore
from meeting_followup.utils import TokenDecryptor, format_duration, safe_dict_get


@pytest.mark.unit
class TestTokenDecryptor:
    """Test token encryption and decryption."""

    def test_decrypt_returns_original(self, decryptor):
        """Test that decrypting an encrypted token returns the original."""
        encrypted = decryptor.encrypt_token("xoxb-secret")

        assert encrypted != "xoxb-secret"
        assert decryptor.decrypt_token(encrypted) == "xoxb-secret"

    def test_decrypt_none_returns_none(self, decryptor):
        """Test that decrypting None returns None."""
        assert decryptor.decrypt_token(None) is None
        assert decryptor.decrypt_token("") is None

    def test_decrypt_with_other_key_returns_none(self, decryptor):
        """Test that a token encrypted under another key is treated as missing."""
        other = TokenDecryptor(Fernet.generate_key().decode())
        assert decryptor.decrypt_token(other.encrypt_token("xoxb-secret")) is None

    def test_invalid_key_raises_configuration_error(self):
        """Test that a malformed key is a configuration error."""
        with pytest.raises(ConfigurationError):
            TokenDecryptor("not-a-fernet-key")


@pytest.mark.unit
class TestCredentialStore:
    """Test credential resolution for users."""

    def test_chat_credential_for_connected_user(self, decryptor):
        """Test that a user with a Slack id and token gets a credential."""
        store = CredentialStore(decryptor)
        user = User(id=1, name="Alice", slack_user_id="U1", slack_token=decryptor.encrypt_token("xoxb-1"))

        credential = store.chat_credential(user)

        assert credential.token == "xoxb-1"
        assert credential.channel == "U1"

    def test_chat_credential_missing_for_unassigned(self, decryptor):
        """Test that no user means no credential."""
        assert CredentialStore(decryptor).chat_credential(None) is None

    def test_chat_credential_missing_without_slack_id(self, decryptor):
        """Test that a token without a Slack user id is not usable."""
        user = User(id=1, name="Alice", slack_token=decryptor.encrypt_token("xoxb-1"))
        assert CredentialStore(decryptor).chat_credential(user) is None

    def test_chat_credential_missing_for_undecryptable_token(self, decryptor):
        """Test that a corrupt token means no credential."""
        user = User(id=1, name="Alice", slack_user_id="U1", slack_token="garbage")
        assert CredentialStore(decryptor).chat_credential(user) is None

    def test_calendar_credential(self, decryptor):
        """Test calendar credential resolution."""
        store = CredentialStore(decryptor)
        user = User(id=1, name="Alice", google_access_token=decryptor.encrypt_token("ya29.token"))

        assert store.calendar_credential(user).access_token == "ya29.token"
        assert store.calendar_credential(User(id=2, name="Bob")) is None


@pytest.mark.unit
class TestUtils:
    """Test helper functions."""

    def test_format_duration(self):
        """Test human readable durations."""
        assert format_duration(12.34) == "12.3s"
        assert format_duration(150) == "2m 30s"
        assert format_duration(3720) == "1h 2m"

    def test_safe_dict_get_nested(self):
        """Test nested lookups through dicts and lists."""
        data = {"choices": [{"message": {"content": "hi"}}]}

        assert safe_dict_get(data, "choices", 0, "message", "content") == "hi"
        assert safe_dict_get(data, "choices", 3, "message", default="x") == "x"
        assert safe_dict_get({}, "missing") is None
