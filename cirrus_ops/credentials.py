"""Encrypted operator credential store.

Secrets such as the wallet password, SMTP password and webhook URL can be kept
out of the plain YAML configuration by storing them in a small JSON document
encrypted with AES-GCM under a scrypt-derived key. The document is read once
at startup and merged into :class:`cirrus_ops.config.OperatorConfig`; the
monitoring process never writes it back.
"""

from __future__ import annotations

import base64
import getpass
import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Mapping

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .config import (
    ConfigurationError,
    OperatorConfig,
    credentials_path_from_file,
    load_operator_config,
)

logger = logging.getLogger(__name__)

PASSPHRASE_ENV = "CIRRUS_OPS_PASSPHRASE"
CREDENTIAL_FIELDS = (
    "wallet_name",
    "wallet_password",
    "public_key",
    "mainchain_address",
    "mail_to",
    "smtp_user",
    "smtp_password",
    "webhook_url",
)

_AESGCM_NONCE_SIZE = 12
_SCRYPT_SALT_SIZE = 16
_SCRYPT_KEY_LENGTH = 32
_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1


class CredentialError(ValueError):
    """Raised when the credential store cannot be read or decrypted."""


@dataclass
class EncryptedCredentials:
    """Serialized form of the credential store."""

    algorithm: str
    kdf: str
    salt: str
    nonce: str
    ciphertext: str


def _derive_key(passphrase: str, salt: bytes) -> bytes:
    kdf = Scrypt(
        salt=salt,
        length=_SCRYPT_KEY_LENGTH,
        n=_SCRYPT_N,
        r=_SCRYPT_R,
        p=_SCRYPT_P,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def derive_key_from_passphrase(passphrase: str, salt: bytes | None = None) -> tuple[bytes, bytes]:
    """Derive a symmetric key using scrypt."""

    if salt is None:
        salt = os.urandom(_SCRYPT_SALT_SIZE)
    key = _derive_key(passphrase, salt)
    logger.debug("Derived credential key using scrypt")
    return key, salt


def encrypt_credentials(credentials: Mapping[str, Any], passphrase: str) -> EncryptedCredentials:
    """Encrypt a credentials mapping; unknown keys are rejected."""

    unknown = sorted(set(credentials) - set(CREDENTIAL_FIELDS))
    if unknown:
        raise CredentialError(f"Unknown credential fields: {', '.join(unknown)}")
    plaintext = json.dumps(dict(credentials), separators=(",", ":"), sort_keys=True).encode(
        "utf-8"
    )
    key, salt = derive_key_from_passphrase(passphrase)
    nonce = os.urandom(_AESGCM_NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, None)
    return EncryptedCredentials(
        algorithm="aes-gcm",
        kdf="scrypt",
        salt=base64.b64encode(salt).decode("ascii"),
        nonce=base64.b64encode(nonce).decode("ascii"),
        ciphertext=base64.b64encode(ciphertext).decode("ascii"),
    )


def decrypt_credentials(encrypted: EncryptedCredentials, passphrase: str) -> dict[str, Any]:
    """Decrypt an :class:`EncryptedCredentials` record."""

    salt = base64.b64decode(encrypted.salt.encode("ascii"))
    nonce = base64.b64decode(encrypted.nonce.encode("ascii"))
    ciphertext = base64.b64decode(encrypted.ciphertext.encode("ascii"))
    key, _ = derive_key_from_passphrase(passphrase, salt=salt)
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
    except InvalidTag as exc:
        raise CredentialError("Failed to decrypt credentials; invalid passphrase or data") from exc
    return json.loads(plaintext.decode("utf-8"))


def save_credentials(path: str | Path, credentials: Mapping[str, Any], passphrase: str) -> Path:
    target = Path(path).expanduser()
    encrypted = encrypt_credentials(credentials, passphrase)
    target.write_text(json.dumps(asdict(encrypted), indent=2))
    try:
        target.chmod(0o600)
    except OSError:  # pragma: no cover - platform dependent
        logger.warning("Could not restrict permissions on %s", target)
    logger.info("Wrote encrypted credentials to %s", target)
    return target


def load_credentials(path: str | Path, passphrase: str) -> dict[str, Any]:
    source = Path(path).expanduser()
    try:
        raw = json.loads(source.read_text())
    except FileNotFoundError as exc:
        raise CredentialError(f"Credentials file not found: {source}") from exc
    except ValueError as exc:
        raise CredentialError(f"Credentials file {source} is not valid JSON") from exc
    try:
        encrypted = EncryptedCredentials(**raw)
    except TypeError as exc:
        raise CredentialError(f"Credentials file {source} is malformed") from exc
    return decrypt_credentials(encrypted, passphrase)


def load_config_with_credentials(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
    prompt: Callable[[str], str] = getpass.getpass,
) -> OperatorConfig:
    """Load the operator config, decrypting the credentials file when configured."""

    env_map = os.environ if env is None else env
    secrets: dict[str, Any] = {}
    credentials_path = credentials_path_from_file(config_path)
    if credentials_path is not None:
        passphrase = env_map.get(PASSPHRASE_ENV) or prompt("Credentials passphrase: ")
        if not passphrase:
            raise ConfigurationError("A passphrase is required to read the credentials file")
        secrets = load_credentials(credentials_path, passphrase)
        logger.debug("Loaded %d credential fields from %s", len(secrets), credentials_path)
    return load_operator_config(
        config_path=config_path, env=env_map, overrides=overrides, secrets=secrets
    )
