# libero_installer/disk/encryption.py

import hmac
import os
import tempfile
from contextlib import contextmanager
from typing import Iterator, Optional

from libero_installer.devices import BlockDevice, EncryptedMapping, RawPartition
from libero_installer.ui import WizardUI
from libero_installer.utils.executor import Executor
from libero_installer.utils.exceptions import (
    EncryptionError, InvalidPassphraseError, PassphraseMismatchError,
    ShellCommandError, UserCancelledError
)

KEY_FILE_PREFIX = "libero-luks.key"
DRY_RUN_KEY_FILE = "<key-file>"


def wipe(buffer: Optional[bytearray]):
    """Overwrites a passphrase buffer with zeros in place."""
    if buffer:
        buffer[:] = bytes(len(buffer))


def read_passphrase(ui: WizardUI) -> bytearray:
    """
    Asks for the LUKS passphrase twice through masked input.

    The caller owns the returned buffer and must wipe() it once done.

    Raises:
        UserCancelledError: If either prompt is cancelled.
        InvalidPassphraseError: If the passphrase is empty.
        PassphraseMismatchError: If the two entries differ.
    """
    first = ui.prompt_input("Disk encryption", "Enter LUKS passphrase", secret=True)
    if first is None:
        raise UserCancelledError("Passphrase entry cancelled.")
    second = ui.prompt_input("Disk encryption", "Confirm LUKS passphrase", secret=True)
    if second is None:
        raise UserCancelledError("Passphrase entry cancelled.")

    entered = bytearray(first.encode("utf-8"))
    confirmed = bytearray(second.encode("utf-8"))
    del first, second
    try:
        if not entered:
            raise InvalidPassphraseError("The passphrase must not be empty.")
        if not hmac.compare_digest(entered, confirmed):
            raise PassphraseMismatchError()
        return bytearray(entered)
    finally:
        wipe(entered)
        wipe(confirmed)


@contextmanager
def temporary_key_file(passphrase: bytearray, directory: Optional[str] = None) -> Iterator[str]:
    """
    Writes the passphrase to a private (0600) temporary file and yields its path.

    The file is removed when the block exits, whether it succeeded or not,
    including when writing the file itself fails.
    """
    try:
        fd, path = tempfile.mkstemp(prefix=KEY_FILE_PREFIX, dir=directory)
    except OSError as e:
        raise EncryptionError(f"Could not create a temporary key file: {e}") from e

    try:
        try:
            with os.fdopen(fd, "wb") as key_file:
                os.fchmod(key_file.fileno(), 0o600)
                key_file.write(passphrase)
        except OSError as e:
            raise EncryptionError(f"Could not write the temporary key file: {e}") from e
        yield path
    finally:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass


def _format_and_open(executor: Executor, partition: RawPartition, mapping_name: str, luks_type: str, key_file: str):
    try:
        executor.run(
            description=f"Formatting {partition.path} as a {luks_type} container",
            command=["cryptsetup", "luksFormat", "--type", luks_type, "--batch-mode",
                     "--key-file", key_file, partition.path],
        )
    except ShellCommandError as e:
        raise EncryptionError(f"Could not create the LUKS container on {partition.path}", cause=e) from e

    try:
        executor.run(
            description=f"Opening {partition.path} as {mapping_name}",
            command=["cryptsetup", "open", "--key-file", key_file, partition.path, mapping_name],
        )
    except ShellCommandError as e:
        raise EncryptionError(f"Could not open the LUKS container on {partition.path}", cause=e) from e


def apply_encryption(executor: Executor,
                     partition: RawPartition,
                     passphrase: Optional[bytearray],
                     mapping_name: str,
                     enabled: bool = True,
                     luks_type: str = "luks1",
                     key_directory: Optional[str] = None) -> BlockDevice:
    """
    Wraps `partition` in a LUKS container and opens it as /dev/mapper/<mapping_name>.

    With encryption disabled the partition is returned unchanged. In dry-run
    mode no key file is written; the commands are logged with a placeholder.

    Raises:
        EncryptionError: If there is no passphrase, or cryptsetup fails.
    """
    if not enabled:
        return partition
    if not passphrase:
        raise EncryptionError("Encryption is enabled but no passphrase was provided.")

    mapping = EncryptedMapping(name=mapping_name, upstream=partition)
    executor.logger.info(f"Encrypting {partition.path} as {mapping.path} ({luks_type})")

    if executor.dry_run:
        _format_and_open(executor, partition, mapping_name, luks_type, DRY_RUN_KEY_FILE)
        return mapping

    with temporary_key_file(passphrase, directory=key_directory) as key_file:
        _format_and_open(executor, partition, mapping_name, luks_type, key_file)

    return mapping
