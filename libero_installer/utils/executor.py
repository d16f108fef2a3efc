import shlex
import subprocess
from typing import List, Optional, Tuple, Union

from libero_installer.utils.logger import RichAppLogger
from libero_installer.utils.exceptions import (
    ShellCommandError, CommandNotFoundError, CommandTimeoutError,
    InvalidCommandError, PermissionDeniedError
)

Command = Union[str, List[str]]


class Executor:
    """
    Runs the partitioning, encryption, LVM and filesystem tools.

    Two entry points:
      - run(): a step that changes the system. Shown to the user through the
        logger's execution_step spinner and skipped in dry-run mode.
      - execute_command(): a read-only query (lsblk, blkid, blockdev). Runs
        even in dry-run mode and shows nothing on screen.

    Both log the command line, the exit code and the captured output, and raise
    a ShellCommandError subclass when the tool fails and `check` is set. There is
    no timeout unless one is given: mkfs or luksFormat on a large disk may take
    a long time.
    """

    def __init__(self,
                 logger_instance: RichAppLogger,
                 default_timeout: Optional[float] = None,
                 dry_run: bool = False):
        self.logger = logger_instance

        if default_timeout is not None and default_timeout <= 0:
            self.logger.error(f"Rejected executor timeout {default_timeout!r}")
            raise ValueError("Default timeout must be a positive number or None.")

        self._default_timeout = default_timeout
        self.dry_run = dry_run
        self.logger.debug(f"Executor ready (dry_run={self.dry_run}, default_timeout={self._default_timeout})")

    def _prepare_command(self, command: Command) -> List[str]:
        """Argument vector for subprocess: strings are split like a shell would, lists are checked."""
        if not command:
            self.logger.error("Refusing to run an empty command.")
            raise InvalidCommandError(str(command), "Command cannot be empty.")

        if isinstance(command, str):
            try:
                return shlex.split(command)
            except ValueError as e:
                self.logger.error(f"Cannot split command line '{command}': {e}")
                raise InvalidCommandError(command, f"Failed to parse command string: {e}")

        if isinstance(command, list):
            if not all(isinstance(arg, str) for arg in command):
                raise InvalidCommandError(str(command), "Every argument must be a string.")
            return command

        self.logger.error(f"Unsupported command type {type(command).__name__}")
        raise InvalidCommandError(str(command), "Command must be a string or a list of strings.")

    def execute_command(self,
                        command: Command,
                        timeout: Optional[float] = None,
                        check: bool = True) -> Tuple[int, str, str]:
        """Runs `command` and returns (exit code, stdout, stderr)."""
        argv = self._prepare_command(command)
        shown = shlex.join(argv)
        limit = timeout if timeout is not None else self._default_timeout

        self.logger.debug(f"Executing: '{shown}'" + (f" (timeout {limit}s)" if limit else ""))

        try:
            process = subprocess.run(argv, capture_output=True, text=True, timeout=limit, check=False)
        except FileNotFoundError:
            self.logger.error(f"'{argv[0]}' is not installed or not in PATH.")
            raise CommandNotFoundError(command=shown, stderr=f"{argv[0]}: command not found")
        except subprocess.TimeoutExpired as e:
            self.logger.warning(f"'{shown}' did not finish within {limit} seconds.")
            stdout = e.stdout.decode() if isinstance(e.stdout, bytes) else (e.stdout or "")
            stderr = e.stderr.decode() if isinstance(e.stderr, bytes) else (e.stderr or "")
            raise CommandTimeoutError(command=shown, timeout=limit, stdout=stdout, stderr=stderr)
        except PermissionError:
            self.logger.error(f"Permission denied while starting '{shown}'.")
            raise PermissionDeniedError(command=shown)
        except (TypeError, ValueError) as e:
            self.logger.error(f"Could not start '{shown}': {e}")
            raise InvalidCommandError(shown, f"Argument error in command execution: {e}")

        exit_code = process.returncode
        stdout = process.stdout or ""
        stderr = process.stderr or ""

        self.logger.debug(f"'{shown}' exited with code {exit_code}")
        if stdout.strip():
            self.logger.debug(f"stdout of {argv[0]}:\n{stdout.strip()}")
        if stderr.strip():
            self.logger.debug(f"stderr of {argv[0]}:\n{stderr.strip()}")

        if not check or exit_code == 0:
            return exit_code, stdout, stderr

        self.logger.error(f"'{shown}' failed with exit code {exit_code}: {stderr.strip() or '(no error output)'}")
        if exit_code == 127:
            raise CommandNotFoundError(command=shown, stdout=stdout, stderr=stderr)
        if exit_code == 126:
            raise PermissionDeniedError(command=shown, stdout=stdout, stderr=stderr)
        raise ShellCommandError(command=shown, exit_code=exit_code, stdout=stdout, stderr=stderr,
                                message=f"Command failed with exit code {exit_code}")

    def run(self,
            description: str,
            command: Command,
            dryrun: Optional[bool] = None,
            timeout: Optional[float] = None,
            check: bool = True) -> Tuple[int, str, str]:
        """
        Runs one step that modifies the system, labelled `description` on screen.

        With dry run on (per call, or from the constructor) the command is only
        logged and (0, "", "") is returned.
        """
        argv = self._prepare_command(command)

        if self.dry_run if dryrun is None else dryrun:
            self.logger.info(f"DRY RUN: Execution skipped for: '{description}'")
            self.logger.debug(f"DRY RUN COMMAND: {shlex.join(argv)}")
            return 0, "", ""

        with self.logger.execution_step(description):
            return self.execute_command(command=argv, timeout=timeout, check=check)
