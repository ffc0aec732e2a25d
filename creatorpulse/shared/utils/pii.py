"""Salted one-way hashing for identifiers and hashtags.

Nothing identifying is stored or logged in clear: account ids, hashtags
and template ids all pass through a SaltedHasher before they reach the
event store or a log line.
"""
import hashlib
import json
import logging

import boto3

logger = logging.getLogger(__name__)

MIN_SALT_LENGTH = 32


def normalize_hashtag(tag: str) -> str:
    """Canonical hashtag form: trimmed, '#'-stripped, lowercase."""
    return tag.strip().lstrip("#").strip().lower()


class SaltedHasher:
    """SHA-256 hasher bound to a per-install secret salt.

    Equal inputs always produce equal digests under the same salt, which
    is what lets hashtag counts aggregate without the text ever being kept.
    """

    def __init__(self, salt: str):
        """Initialize hasher.

        Args:
            salt: Secret salt, at least 32 characters

        Raises:
            ValueError: If salt is empty or too short
        """
        if not salt or len(salt) < MIN_SALT_LENGTH:
            logger.critical(
                "HASH_SALT_CONFIGURATION_FAILED",
                extra={"reason": "Salt too short or empty", "min_length": MIN_SALT_LENGTH}
            )
            raise ValueError(f"Hash salt must be at least {MIN_SALT_LENGTH} characters")

        self._salt = salt
        logger.info("HASH_SALT_CONFIGURED", extra={"salt_length": len(salt)})

    @property
    def salt(self) -> str:
        return self._salt

    def hash_identifier(self, value: str) -> str:
        """Hash an identifier for safe logging and storage.

        Args:
            value: Raw identifier (account id, session key, etc.)

        Returns:
            64-char hex digest
        """
        salted = f"{self._salt}{value}"
        return hashlib.sha256(salted.encode()).hexdigest()

    def hash_hashtag(self, tag: str) -> str:
        """Hash a hashtag. Case and a leading '#' do not affect the result."""
        return self.hash_identifier(f"hashtag:{normalize_hashtag(tag)}")

    def hash_template(self, template_id: str) -> str:
        return self.hash_identifier(f"template:{template_id.strip().lower()}")


def load_salt_from_secrets_manager(
    secret_id: str,
    region: str = "us-east-1",
    key: str = "analytics_salt",
) -> str:
    """Fetch the hashing salt from AWS Secrets Manager.

    The secret may be a plain string or a JSON object holding `key`.

    Args:
        secret_id: Secret name or ARN
        region: AWS region
        key: Field to read when the secret is JSON

    Returns:
        The salt string
    """
    try:
        client = boto3.client("secretsmanager", region_name=region)
        response = client.get_secret_value(SecretId=secret_id)
    except Exception as e:
        logger.error(
            "SALT_SECRET_LOAD_FAILED",
            extra={"error": str(e), "secret_id": secret_id}
        )
        raise

    secret = response["SecretString"]
    try:
        parsed = json.loads(secret)
    except json.JSONDecodeError:
        return secret

    if isinstance(parsed, dict):
        return parsed[key]
    return secret
