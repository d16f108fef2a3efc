import logging
import os
import sys
import time
from contextlib import contextmanager

from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

from libero_installer.utils.exceptions import ShellCommandError

# --- 1. Installer log levels ---
# SECTION marks the start of a disk preparation stage, EXECUTE brackets one external command.
SECTION_LEVEL_NUM = 25
EXECUTE_LEVEL_NUM = 26
logging.addLevelName(SECTION_LEVEL_NUM, 'SECTION')
logging.addLevelName(EXECUTE_LEVEL_NUM, 'EXECUTE')


class AppLogger(logging.Logger):
    """logging.Logger with section() and execute() for the two installer levels."""

    def section(self, msg, *args, **kwargs):
        if self.isEnabledFor(SECTION_LEVEL_NUM):
            self._log(SECTION_LEVEL_NUM, msg, args, **kwargs)

    def execute(self, msg, *args, **kwargs):
        if self.isEnabledFor(EXECUTE_LEVEL_NUM):
            self._log(EXECUTE_LEVEL_NUM, msg, args, **kwargs)


# Must be set before the installer modules call logging.getLogger(__name__).
logging.setLoggerClass(AppLogger)


# --- 2. Log file layout ---
class FileFormatter(logging.Formatter):
    """
    Fixed-width columns for the installer log.

    Continuation lines (captured stdout/stderr of a tool) are indented under
    the message column so a failing command's output stays readable.
    """

    FORMAT = '%(asctime)s - %(levelname)-9s - %(name)-30s - %(filename)-15s:%(lineno)-5d - %(message)s'
    CONTINUATION = ' ' * 8 + '| '

    def __init__(self):
        super().__init__(self.FORMAT)

    def format(self, record):
        text = super().format(record)
        head, _, tail = text.partition('\n')
        if not tail:
            return head
        return head + '\n' + '\n'.join(self.CONTINUATION + line for line in tail.splitlines())


# --- 3. Console-facing wrapper ---
class RichAppLogger:
    """
    Couples the installer's AppLogger with the Rich console the wizard draws on.

    Everything goes to the log file; the console only shows section headers,
    the outcome of each command step and warnings or worse. `log_file_path`
    tells failure messages where the full command output can be found.
    """

    def __init__(self, console: Console, logger: AppLogger, log_file_path: str = ""):
        self.console = console
        self.logger: AppLogger = logger
        self.log_file_path = log_file_path

    def section(self, message: str, *args, **kwargs):
        """Starts a new stage: one yellow header on screen, one SECTION record in the file."""
        self.console.print(Text(f"SECTION: {message}", style="bold yellow"))
        self.logger.section(f"SECTION: {message}", *args, **kwargs)

    @contextmanager
    def execution_step(self, message: str):
        """
        Wraps one external command. A spinner shows `message` while the block
        runs and is replaced by a COMPLETED, CRITICAL (the tool failed) or
        FAILED (anything else raised) line. The exception is re-raised.
        """
        started = time.monotonic()
        with self.console.status(f"[bold green]...[/] [RUNNING] {message}", spinner="dots") as status:
            self.logger.execute(f"[RUNNING] {message}")
            try:
                yield status
            except Exception as e:
                tool_failed = isinstance(e, ShellCommandError)
                tag = "[CRITICAL]" if tool_failed else "[FAILED]"
                self.console.print(f"[bold red]✘ {tag}[/bold red] {message}")
                self.logger.execute(f"{tag} {message} ({time.monotonic() - started:.1f}s)")
                self.logger.exception(f"Exception during execution step: {message}")
                # The log already holds the tool's stderr; only unexpected errors get a traceback.
                if not tool_failed:
                    self.console.print("\n[bold red]Traceback (most recent call last):[/bold red]")
                    self.console.print_exception(show_locals=True)
                raise
            self.console.print(f"[green]✔ [COMPLETED][/green] {message}")
            self.logger.execute(f"[COMPLETED] {message} ({time.monotonic() - started:.1f}s)")

    def info(self, message, *args, **kwargs):
        self.logger.info(message, *args, **kwargs)

    def warning(self, message, *args, **kwargs):
        self.logger.warning(message, *args, **kwargs)

    def error(self, message, *args, **kwargs):
        self.logger.error(message, *args, **kwargs)

    def debug(self, message, *args, **kwargs):
        self.logger.debug(message, *args, **kwargs)

    def critical(self, message, *args, **kwargs):
        self.logger.critical(message, *args, **kwargs)

    def exception(self, message, *args, **kwargs):
        """ERROR record with traceback in the file, Rich traceback on screen."""
        self.logger.exception(message, *args, **kwargs)
        self.console.print(f"[bold red]FATAL ERROR: {message}[/bold red]")
        self.console.print_exception(show_locals=True)


class ExecuteFilter(logging.Filter):
    """Keeps EXECUTE records off the console; execution_step draws those itself."""

    def filter(self, record):
        return record.levelno != EXECUTE_LEVEL_NUM


# --- 4. Setup ---
def initialize_app_logger(
    app_name: str,
    log_directory: str = "logs",
    log_file_name: str = "installer.log",
    file_log_level: int = logging.DEBUG,
    console_log_level: int = logging.WARNING,
    console: Console = None,
) -> RichAppLogger:
    """
    Opens the installer log (appending to earlier runs) and attaches a Rich
    console handler. Modules logging through logging.getLogger(__name__) below
    `app_name` end up in the same file.

    Calling it again replaces the handlers of the previous call.

    Raises:
        OSError: If the log directory cannot be created or the file opened.
    """
    logger: AppLogger = logging.getLogger(app_name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    os.makedirs(log_directory, exist_ok=True)
    log_file_path = os.path.join(log_directory, log_file_name)

    file_handler = logging.FileHandler(log_file_path, mode='a', encoding='utf-8')
    file_handler.setLevel(file_log_level)
    file_handler.setFormatter(FileFormatter())
    logger.addHandler(file_handler)

    if console is None:
        console = Console(file=sys.stderr, force_terminal=True, soft_wrap=True)

    console_handler = RichHandler(
        console=console,
        show_time=False,
        show_level=True,
        show_path=False,
        keywords=[],
        level=console_log_level
    )
    console_handler.addFilter(ExecuteFilter())
    logger.addHandler(console_handler)

    logger.info(f"==== {app_name} session started (pid {os.getpid()}) ====")
    return RichAppLogger(console, logger, log_file_path=log_file_path)
