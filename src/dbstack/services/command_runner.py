"""Subprocess execution service for dbstack."""

import subprocess
from typing import List, Optional

from dbstack.errors import StackError


class CommandRunner:
    """Runs docker CLI commands; credentials never reach the log."""

    SECRET_MARKERS = ("PASSWORD",)

    def __init__(self, logger):
        self.logger = logger

    @classmethod
    def redact(cls, cmd: List[str]) -> str:
        """Render a command line with credential values masked."""
        rendered = []
        for part in cmd:
            key, sep, _value = part.partition("=")
            if sep and any(marker in key.upper() for marker in cls.SECRET_MARKERS):
                part = f"{key}=[HIDDEN]"
            rendered.append(part)
        return " ".join(rendered)

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        input_text: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        cmd_str = self.redact(cmd)
        self.logger.debug("Executing: %s", cmd_str)

        try:
            result = subprocess.run(cmd, text=True, capture_output=capture_output, input=input_text)
        except FileNotFoundError as exc:
            raise StackError(
                f"Required command not found: {cmd[0]}. Please install it and try again."
            ) from exc
        except OSError as exc:
            raise StackError(f"Failed to execute command: {cmd_str}. {exc}") from exc

        if capture_output and result.stdout:
            self.logger.debug("Command output: %s", result.stdout.strip())

        if result.returncode != 0:
            message = f"Command failed ({result.returncode}): {cmd_str}"
            stderr = (result.stderr or "").strip() if capture_output else ""
            if stderr:
                message = f"{message}\n{stderr}"
            if check:
                raise StackError(message)
            # Probes fail routinely; keep them out of the default log.
            self.logger.debug(message)

        return result
