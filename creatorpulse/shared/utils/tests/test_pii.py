"""Tests for salted hashing."""
import json
from unittest.mock import MagicMock, patch

import pytest

from creatorpulse.shared.utils.pii import (
    SaltedHasher,
    load_salt_from_secrets_manager,
    normalize_hashtag,
)

SALT = "test_salt_that_is_at_least_32_characters_long"


@pytest.fixture
def hasher():
    return SaltedHasher(SALT)


class TestSaltedHasher:
    """Tests for SaltedHasher."""

    def test_rejects_short_salt(self):
        with pytest.raises(ValueError):
            SaltedHasher("short")

    def test_rejects_empty_salt(self):
        with pytest.raises(ValueError):
            SaltedHasher("")

    def test_identifier_hash_is_stable(self, hasher):
        assert hasher.hash_identifier("acct-1") == hasher.hash_identifier("acct-1")
        assert len(hasher.hash_identifier("acct-1")) == 64

    def test_identifier_hash_depends_on_salt(self, hasher):
        other = SaltedHasher("another_salt_that_is_also_32_characters_long")

        assert hasher.hash_identifier("acct-1") != other.hash_identifier("acct-1")

    def test_hashtag_hash_ignores_case_and_hash_sign(self, hasher):
        expected = hasher.hash_hashtag("sunset")

        assert hasher.hash_hashtag("#Sunset") == expected
        assert hasher.hash_hashtag("  #SUNSET ") == expected

    def test_hashtag_hash_differs_per_tag(self, hasher):
        assert hasher.hash_hashtag("sunset") != hasher.hash_hashtag("sunrise")

    def test_hashtag_and_template_namespaces_differ(self, hasher):
        assert hasher.hash_hashtag("promo") != hasher.hash_template("promo")


class TestNormalizeHashtag:
    """Tests for hashtag normalization."""

    def test_strips_and_lowercases(self):
        assert normalize_hashtag(" #TravelGram ") == "travelgram"

    def test_plain_tag_unchanged(self):
        assert normalize_hashtag("food") == "food"


class TestLoadSalt:
    """Tests for loading the salt from Secrets Manager."""

    def _client(self, secret_string):
        client = MagicMock()
        client.get_secret_value.return_value = {"SecretString": secret_string}
        return client

    def test_plain_string_secret(self):
        client = self._client(SALT)
        with patch("creatorpulse.shared.utils.pii.boto3.client", return_value=client):
            assert load_salt_from_secrets_manager("salt-secret") == SALT

    def test_json_secret(self):
        client = self._client(json.dumps({"analytics_salt": SALT}))
        with patch("creatorpulse.shared.utils.pii.boto3.client", return_value=client):
            assert load_salt_from_secrets_manager("salt-secret") == SALT

    def test_failure_propagates(self):
        client = MagicMock()
        client.get_secret_value.side_effect = RuntimeError("denied")
        with patch("creatorpulse.shared.utils.pii.boto3.client", return_value=client):
            with pytest.raises(RuntimeError):
                load_salt_from_secrets_manager("salt-secret")
