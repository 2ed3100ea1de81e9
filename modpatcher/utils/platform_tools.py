"""Wrappers around the on-device package manager and appops commands."""

from __future__ import annotations

import logging
import re
import subprocess
from typing import Callable, List, Optional

from ..exceptions import PlatformCommandError
from ..models import AppInfo

logger = logging.getLogger(__name__)

VERSION_NAME_RE = re.compile(r"versionName=(?P<version>\S+)")
PACKAGE_PATH_RE = re.compile(r"^package:(?P<path>.+)$", re.MULTILINE)
FAILURE_MARKER = "Failure"

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


class PlatformTools:
    """Runs platform commands synchronously and checks their outcome.

    ``pm`` reports some failures with exit code 0 and a ``Failure [...]`` line
    on stdout, so both are checked.
    """

    def __init__(self, runner: Optional[Runner] = None, timeout_sec: float = 300.0):
        self.runner = runner or subprocess.run
        self.timeout_sec = timeout_sec

    def _exec(self, args: List[str]) -> "subprocess.CompletedProcess[str]":
        command = " ".join(args)
        logger.debug("Running %s", command)
        try:
            return self.runner(
                args,
                capture_output=True,
                text=True,
                timeout=self.timeout_sec,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise PlatformCommandError(f"Could not run {args[0]}: {exc}", command=command) from exc

    def run(self, args: List[str], label: str) -> str:
        """Run ``args`` and return stdout. Raises PlatformCommandError on failure."""
        result = self._exec(args)
        command = " ".join(args)
        stdout = result.stdout or ""
        stderr = result.stderr or ""

        if result.returncode != 0 or FAILURE_MARKER in stdout:
            raise PlatformCommandError(
                f"Failed to {label}: {(stderr or stdout).strip() or 'exit code %d' % result.returncode}",
                command=command,
                exit_code=result.returncode,
                stderr=stderr or stdout,
            )
        return stdout

    def uninstall(self, app_id: str) -> None:
        logger.info("Uninstalling %s", app_id)
        self.run(["pm", "uninstall", app_id], "uninstall vanilla APK")

    def install(self, apk_path: str) -> None:
        logger.info("Installing %s", apk_path)
        self.run(["pm", "install", str(apk_path)], "install modded APK")

    def grant_manage_storage(self, app_id: str, op: str = "MANAGE_EXTERNAL_STORAGE") -> None:
        logger.info("Granting external storage permission")
        self.run(["appops", "set", "--uid", app_id, op, "allow"], "grant external storage permission")

    def get_app_info(self, app_id: str) -> Optional[AppInfo]:
        """Version and APK path of an installed app, or None if it is not installed."""
        result = self._exec(["pm", "path", app_id])
        match = PACKAGE_PATH_RE.search(result.stdout or "")
        if result.returncode != 0 or match is None:
            logger.debug("%s is not installed", app_id)
            return None
        apk_path = match.group("path").strip()

        dumpsys = self.run(["dumpsys", "package", app_id], "read package info")
        version = VERSION_NAME_RE.search(dumpsys)
        if version is None:
            raise PlatformCommandError(
                f"No versionName in package info for {app_id}", command=f"dumpsys package {app_id}"
            )
        return AppInfo(version=version.group("version"), path=apk_path)
