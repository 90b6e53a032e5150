"""Custom exception hierarchy for the vaultfs engine."""


class VaultError(Exception):
    """Base exception for all vaultfs errors."""


class NotFoundError(VaultError, LookupError):
    """Base for lookups that found nothing."""


class NodeNotFoundError(NotFoundError):
    """Raised when a node is absent, or not in the deletion state the operation needs."""


class PrincipalNotFoundError(NotFoundError):
    """Raised when a user or group does not exist."""


class AccessDeniedError(VaultError, PermissionError):
    """Raised on a failed permission check or a lock-ownership violation."""


class FileLockedError(VaultError):
    """Raised when a file is locked by another actor."""


class DuplicateNameError(VaultError):
    """Raised when a live sibling (or a user/group) with the same name already exists."""


class ParentNotDirectoryError(VaultError):
    """Raised when a parent or destination node is not a directory."""


class InvalidPermissionFormatError(VaultError, ValueError):
    """Raised when a permission mode is not three digits in the range 0-7."""


class IllegalStateError(VaultError):
    """Raised when the system state does not allow the operation.

    Examples: the actor has no group, or a lock is attempted on a file
    whose parent directory does not have versioning enabled.
    """


class IllegalArgumentError(VaultError, ValueError):
    """Raised when an operation is applied to the wrong kind of node, or a bad name."""


class BlobStoreError(VaultError):
    """Raised on blob backend failures (disk I/O, network, etc.)."""


class BlobNotFoundError(BlobStoreError, NotFoundError):
    """Raised when a blob key does not exist in the store."""
