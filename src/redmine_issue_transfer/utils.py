"""
Utility functions for the Redmine issue transfer tool.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from subprocess import CompletedProcess
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

logger: logging.Logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
LOG_FILE = "transfer.log"


class PassError(Exception):
    """Base class for pass-related errors."""


class InvalidPassPathError(PassError):
    """Raised when the pass path is malformed or not in the password store."""


def setup_logging(*, verbosity: int = 0) -> None:
    """Configure logging for a transfer run.

    The log file always receives DEBUG records; the console shows warnings
    by default, INFO with ``-v`` and DEBUG with ``-vv``.
    """
    console_level = {0: logging.WARNING, 1: logging.INFO}.get(verbosity, logging.DEBUG)

    console = logging.StreamHandler()
    console.setLevel(console_level)
    logfile = logging.FileHandler(LOG_FILE, mode="a", encoding="utf-8")
    logfile.setLevel(logging.DEBUG)

    logging.basicConfig(level=logging.DEBUG, format=LOG_FORMAT, handlers=[console, logfile])


def redact(text: str, secrets: Iterable[str | None]) -> str:
    """Replace every non-empty secret in ``text`` with ``***KEY***``."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, "***KEY***")
    return text


def get_pass_value(pass_path: str) -> str:
    """Read a secret from the ``pass`` password store."""
    if not re.fullmatch(r"[A-Za-z0-9_-]+(?:/[A-Za-z0-9_-]+)*", pass_path):
        msg = f"Invalid pass path: {pass_path}"
        raise InvalidPassPathError(msg)

    try:
        result: CompletedProcess[str] = subprocess.run(  # noqa: S603
            ["pass", pass_path], capture_output=True, text=True, check=True
        )
    except FileNotFoundError as e:
        msg = "The pass utility is not installed"
        raise PassError(msg) from e
    except subprocess.CalledProcessError as e:
        if "not in the password store" in e.stderr.lower():
            msg = f"Pass path '{pass_path}' not found."
            raise InvalidPassPathError(msg) from e
        msg = f"Failed to read '{pass_path}' from pass (exit {e.returncode}): {e.stderr.strip()}"
        raise PassError(msg) from e

    return result.stdout.strip()


def get_api_key(pass_path: str | None, env_var: str, default_pass_path: str) -> str | None:
    """Find an API key: explicit pass path, then ``env_var``, then the default pass entry."""
    if pass_path:
        return get_pass_value(pass_path)

    key = os.environ.get(env_var)
    if key:
        return key

    try:
        return get_pass_value(default_pass_path)
    except PassError:
        logger.warning(f"No API key specified in {env_var} nor found at pass path {default_pass_path}")
        return None
