"""
Exception types raised by the warp pipeline.

I/O failures are left as the builtin OSError. Everything else derives
from TimewarpError so the CLI can report it in one place.
"""

from typing import List, Optional


class TimewarpError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(TimewarpError, ValueError):
    """Invalid parameters detected before or during processing."""


class InvalidInputError(TimewarpError, ValueError):
    """An input source that cannot be consumed at all."""


class MalformedOutputError(TimewarpError, RuntimeError):
    """A probing tool printed something we could not parse."""

    def __init__(self, message: str, raw_output: str):
        super().__init__(f"{message}: {raw_output!r}")
        self.raw_output = raw_output


class ToolError(TimewarpError, RuntimeError):
    """An external tool exited with a non-zero status."""

    def __init__(self, cmd: List[str], returncode: int, stderr: Optional[str] = None):
        detail = (stderr or "").strip()
        message = f"{cmd[0]} exited with status {returncode}"
        if detail:
            message += f":\n{detail}"
        super().__init__(message)
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
