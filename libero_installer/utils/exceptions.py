# libero_installer/utils/exceptions.py
from typing import Optional

# --- Shell command errors (raised by the Executor) ---

class ShellCommandError(Exception):
    """Base class for errors related to shell command execution."""

    def __init__(self, command: str, exit_code: int = -1, stdout: str = "", stderr: str = "", message: str = "Command execution failed."):
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"{message} (Command: '{command}', Exit Code: {exit_code})")


class CommandNotFoundError(ShellCommandError):
    """Raised when the executable specified in the command cannot be found."""

    def __init__(self, command: str, stdout: str = "", stderr: str = ""):
        super().__init__(command, exit_code=127, stdout=stdout, stderr=stderr, message="Command not found.")


class CommandTimeoutError(ShellCommandError):
    """Raised when the command exceeds the execution timeout."""

    def __init__(self, command: str, timeout: float, stdout: str = "", stderr: str = ""):
        self.timeout = timeout
        super().__init__(command, exit_code=124, stdout=stdout, stderr=stderr, message=f"Command timed out after {timeout} seconds.")


class InvalidCommandError(ShellCommandError):
    """Raised when the command string/list is invalid, empty, or improperly formatted."""

    def __init__(self, command: str, message: str):
        super().__init__(command, exit_code=-2, message=message)


class PermissionDeniedError(ShellCommandError):
    """Raised when command execution fails due to permissions."""
    def __init__(self, command: str, stdout: str = "", stderr: str = ""):
        super().__init__(command, exit_code=126, stdout=stdout, stderr=stderr, message="Permission denied.")


# --- Installer errors (raised by the disk components, caught by the workflow) ---

class InstallerError(Exception):
    """Base class for every disk-preparation failure reported to the user."""


class UserInputError(InstallerError):
    """Input the user can correct by simply trying again."""


class UserCancelledError(UserInputError):
    """The user backed out of a menu or prompt."""


class InvalidPassphraseError(UserInputError):
    """The passphrase entered for the LUKS container is unusable."""


class PassphraseMismatchError(InvalidPassphraseError):
    """The two passphrase entries differ."""

    def __init__(self):
        super().__init__("Passphrase mismatch: the two entries differ.")


class PreconditionError(InstallerError):
    """A step was started before the state it depends on exists."""


class DiskInventoryError(InstallerError):
    """The block device directory could not be read."""


class InsufficientSpaceError(PreconditionError):
    """The disk is too small for the requested layout."""

    def __init__(self, required_mb: int, available_mb: int):
        self.required_mb = required_mb
        self.available_mb = available_mb
        super().__init__(f"Insufficient space: layout needs more than {required_mb} MB, disk has {available_mb} MB.")


class CommandStepError(InstallerError):
    """An external tool failed while a component was running it."""

    def __init__(self, message: str, cause: Optional[ShellCommandError] = None):
        self.cause = cause
        if cause is not None:
            message = f"{message} (exit code {cause.exit_code})"
        super().__init__(message)


class PartitioningError(CommandStepError):
    """Writing the partition table or one of its partitions failed."""


class EncryptionError(CommandStepError):
    """Creating or opening the LUKS container failed."""


class VolumeManagerError(CommandStepError):
    """An LVM command failed."""


class FilesystemError(CommandStepError):
    """Creating a filesystem or activating swap failed."""


class MountError(CommandStepError):
    """A mountpoint could not be created or mounted."""
