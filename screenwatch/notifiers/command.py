"""Lock action that runs a local command (e.g. `loginctl lock-session`)."""

import logging
import shlex
import subprocess

from screenwatch.models import LockReason

logger = logging.getLogger(__name__)


class CommandLocker:
    """Locks the screen by running a configured shell command.

    The command may contain a `{reason}` placeholder, replaced with the
    lock reason value ("screen_time" or "bedtime").
    """

    def __init__(self, command: str, timeout_seconds: float = 15.0) -> None:
        self.command = command
        self.timeout_seconds = timeout_seconds

    def build_args(self, reason: LockReason) -> list[str]:
        return shlex.split(self.command.replace("{reason}", reason.value))

    def lock(self, reason: LockReason) -> bool:
        """Run the lock command. Returns True on success."""
        args = self.build_args(reason)
        logger.info(f"Locking screen ({reason.value}): {' '.join(args)}")
        try:
            subprocess.run(
                args,
                check=True,
                timeout=self.timeout_seconds,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
            return True
        except subprocess.CalledProcessError as exc:
            logger.error(f"Lock command failed ({exc.returncode})")
        except subprocess.TimeoutExpired:
            logger.error(f"Lock command timed out after {self.timeout_seconds}s")
        except OSError as exc:
            logger.error(f"Lock command could not be started: {exc}")
        return False
