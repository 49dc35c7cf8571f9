"""Loading of the attester signing identity."""

import json
import logging

from eth_account import Account
from eth_account.signers.local import LocalAccount

from .config import LedgerConfig
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def account_from_private_key(private_key: str) -> LocalAccount:
    key = private_key.strip()
    if not key.startswith("0x"):
        key = "0x" + key
    try:
        return Account.from_key(key)
    except (ValueError, TypeError) as e:
        raise ConfigurationError("ATTESTER_PRIVATE_KEY is not a valid secp256k1 private key") from e


def account_from_keystore(path: str, password: str) -> LocalAccount:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            keystore = json.load(fh)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Cannot read keystore {path}: {e}") from e
    try:
        key = Account.decrypt(keystore, password)
    except ValueError as e:
        raise ConfigurationError(f"Cannot decrypt keystore {path}: wrong password or corrupt file") from e
    return Account.from_key(key)


def load_account(config: LedgerConfig) -> LocalAccount:
    """Return the attester account from a private key or an encrypted JSON keystore."""
    if config.attester_private_key:
        account = account_from_private_key(config.attester_private_key)
    elif config.keystore_path:
        if not config.keystore_password:
            raise ConfigurationError("ATTESTER_KEYSTORE_PASSWORD is required with ATTESTER_KEYSTORE_PATH")
        account = account_from_keystore(config.keystore_path, config.keystore_password)
    else:
        raise ConfigurationError("ATTESTER_PRIVATE_KEY or ATTESTER_KEYSTORE_PATH is required")
    logger.info(f"Loaded attester identity {account.address}")
    return account


__all__ = ["account_from_private_key", "account_from_keystore", "load_account"]
