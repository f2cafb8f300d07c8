"""
Diary Vault Exception Classes
"""


class VaultError(Exception):
    """Base exception for diary vault operations"""
    pass


class DerivationError(VaultError):
    """Raised when key derivation parameters are invalid"""
    pass


class AuthenticationError(VaultError):
    """Raised when ciphertext fails the integrity check under the given key"""
    pass


class DecodeError(VaultError):
    """Raised when bytes or text cannot be decoded (UTF-8, base64, JSON)"""
    pass


class MalformedRecordError(VaultError):
    """Raised when a persisted record is structurally invalid"""
    pass


class UnlockFailed(VaultError):
    """Raised when the vault cannot be unlocked.

    Wrong password and corrupted data are reported identically.
    """

    def __init__(self, message: str = "Incorrect password or corrupted data."):
        super().__init__(message)


class ImportFailed(VaultError):
    """Raised when a backup file cannot be imported"""

    def __init__(self, message: str = "Incorrect password or corrupted file."):
        super().__init__(message)


class NotUnlocked(VaultError):
    """Raised when entries are read or mutated while the vault is locked"""

    def __init__(self, message: str = "Vault is locked. Unlock vault first."):
        super().__init__(message)


class NotFound(VaultError):
    """Raised when an operation targets an entry that does not exist"""
    pass


class InvalidDateKey(VaultError, ValueError):
    """Raised when a date key is not a canonical YYYY-MM-DD calendar date"""
    pass


class VaultExists(VaultError):
    """Raised when creating a vault while a persisted record already exists"""

    def __init__(self, message: str = "Vault already exists. Unlock it instead."):
        super().__init__(message)


class VaultNotFound(VaultError):
    """Raised when no persisted record exists"""

    def __init__(self, message: str = "No vault has been created yet."):
        super().__init__(message)


class PersistFailed(VaultError):
    """Raised when the encrypted record could not be written to storage"""
    pass


class StorageReadFailed(VaultError):
    """Raised when the record file exists but cannot be read"""
    pass
