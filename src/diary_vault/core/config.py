# Core - Configuration
#
# Settings come from the environment (optionally a local .env file):
#   DIARY_VAULT_PATH       record file         (default: data/diary.vault.json)
#   DIARY_AUDIT_DIR        audit log directory (default: ./audit_logs)
#   DIARY_KDF_ITERATIONS   work factor for NEW vaults (default: 150000)
#   DIARY_API_HOST         API bind host       (default: 127.0.0.1)
#   DIARY_API_PORT         API bind port       (default: 8000)

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from ..vault.store_format import DEFAULT_ITERATIONS

DEFAULT_VAULT_PATH = "data/diary.vault.json"
DEFAULT_AUDIT_DIR = "./audit_logs"
DEFAULT_API_HOST = "127.0.0.1"
DEFAULT_API_PORT = 8000


@dataclass(frozen=True)
class VaultConfig:
    vault_path: Path
    audit_dir: Path
    kdf_iterations: int = DEFAULT_ITERATIONS
    api_host: str = DEFAULT_API_HOST
    api_port: int = DEFAULT_API_PORT


def _positive_int(name: str, default: int) -> int:
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if parsed < 1:
        raise ValueError(f"{name} must be a positive integer, got {parsed}")
    return parsed


def load_config() -> VaultConfig:
    """Build the configuration from the environment.

    Raises:
        ValueError: A numeric setting is not a positive integer
    """
    load_dotenv()

    return VaultConfig(
        vault_path=Path(os.environ.get("DIARY_VAULT_PATH") or DEFAULT_VAULT_PATH),
        audit_dir=Path(os.environ.get("DIARY_AUDIT_DIR") or DEFAULT_AUDIT_DIR),
        kdf_iterations=_positive_int("DIARY_KDF_ITERATIONS", DEFAULT_ITERATIONS),
        api_host=os.environ.get("DIARY_API_HOST") or DEFAULT_API_HOST,
        api_port=_positive_int("DIARY_API_PORT", DEFAULT_API_PORT),
    )
