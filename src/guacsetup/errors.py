"""Domain errors for guacsetup."""


class ProvisionError(RuntimeError):
    """Raised when provisioning cannot continue safely."""


class PrivilegeError(ProvisionError):
    """Raised when the workflow is started without root privileges."""


class ConfigError(ProvisionError):
    """Raised for unreadable or invalid configuration files."""


class ResolutionError(ProvisionError):
    """Raised when an upstream release index is unreachable or has no stable release."""


class PackageError(ProvisionError):
    """Raised when the OS package manager fails."""


class DatabaseError(ProvisionError):
    """Raised when a SQL statement or schema file fails to execute."""


class DownloadError(ProvisionError):
    """Raised when an archive cannot be fetched."""


class ExtractionError(ProvisionError):
    """Raised when an archive is malformed or an expected entry is missing."""


class ServiceError(ProvisionError):
    """Raised when a service fails to start, stop or reload."""
