"""Subprocess execution service for guacsetup."""

import os
import subprocess
from typing import Dict, List, Optional, Type

from guacsetup.errors import ProvisionError


class CommandRunner:
    """Runs external commands with consistent, fail-fast error handling."""

    def __init__(self, logger, default_timeout: Optional[float] = None):
        self.logger = logger
        self.default_timeout = default_timeout

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        input_text: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        error_cls: Type[ProvisionError] = ProvisionError,
    ) -> subprocess.CompletedProcess:
        cmd_str = " ".join(cmd)
        self.logger.debug("Executing: %s", cmd_str)

        effective_timeout = timeout if timeout is not None else self.default_timeout
        run_env = None
        if env:
            run_env = os.environ.copy()
            run_env.update(env)

        try:
            result = subprocess.run(
                cmd,
                text=True,
                input=input_text,
                capture_output=capture_output,
                timeout=effective_timeout,
                env=run_env,
            )
        except FileNotFoundError as exc:
            raise error_cls(
                f"Required command not found: {cmd[0]}. Please install it and try again."
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise error_cls(f"Command timed out after {effective_timeout}s: {cmd_str}") from exc
        except OSError as exc:
            raise error_cls(f"Failed to execute command: {cmd_str}. {exc}") from exc

        if capture_output and result.stdout:
            self.logger.debug("Command output: %s", result.stdout.strip())

        if result.returncode == 0 or not check:
            return result

        stderr = (result.stderr or "").strip() if capture_output else ""
        message = f"Command failed ({result.returncode}): {cmd_str}"
        if stderr:
            message = f"{message}\n{stderr}"
        raise error_cls(message)
