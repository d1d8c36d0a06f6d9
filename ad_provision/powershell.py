"""
Command execution for file server and group policy provisioning.

SMB shares and group policy objects are created through their PowerShell
modules (SmbShare, GroupPolicy); folder ACLs are applied with icacls. This
module renders and runs those commands and honours dry-run mode.
"""

import logging
import subprocess
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)


class PowerShellError(Exception):
    """Raised when a PowerShell script or native command fails."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ''):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


# PowerShell ends a single-quoted literal on any of these
SINGLE_QUOTE_CHARS = ("'", '\u2018', '\u2019', '\u201a', '\u201b')


def quote(value: Any) -> str:
    """
    Quote a value as a PowerShell single-quoted string literal.

    Every single-quote character PowerShell recognises, including the
    typographic ones, is doubled.
    """
    text = str(value)
    for char in SINGLE_QUOTE_CHARS:
        text = text.replace(char, char * 2)
    return "'" + text + "'"


def build_command(cmdlet: str, params: Dict[str, Any]) -> str:
    """
    Render a cmdlet invocation.

    ``None`` and empty values are omitted, ``True`` renders a switch, ``False``
    renders ``-Name:$false`` and lists render as comma-separated literals.

    Example:
        >>> build_command('New-SmbShare', {'Name': 'Finance', 'ReadAccess': ['Staff', 'Audit']})
        "New-SmbShare -Name 'Finance' -ReadAccess 'Staff','Audit'"
    """
    parts = [cmdlet]
    for name, value in params.items():
        if value is None or value == '' or value == []:
            continue
        if value is True:
            parts.append(f"-{name}")
        elif value is False:
            parts.append(f"-{name}:$false")
        elif isinstance(value, (list, tuple)):
            parts.append(f"-{name} " + ','.join(quote(item) for item in value))
        else:
            parts.append(f"-{name} {quote(value)}")
    return ' '.join(parts)


class PowerShellRunner:
    """Runs PowerShell scripts and native tools on the provisioning host."""

    def __init__(self, config: Optional[Dict[str, Any]] = None, dry_run: bool = False):
        """
        Initialize runner.

        Args:
            config: Platform configuration (powershell, icacls, command_timeout)
            dry_run: Log commands instead of running them
        """
        config = config or {}
        self.executable = config.get('powershell', 'powershell.exe')
        self.icacls = config.get('icacls', 'icacls')
        self.timeout = config.get('command_timeout', 300)
        self.dry_run = dry_run

    def run_script(self, script: str) -> str:
        """
        Run a PowerShell script.

        Args:
            script: Script text passed to -Command

        Returns:
            Stripped standard output ('' in dry-run mode)

        Raises:
            PowerShellError: On non-zero exit, timeout or missing executable
        """
        args = [self.executable, '-NoProfile', '-NonInteractive', '-Command', script]
        if self.dry_run:
            logger.info(f"[DRY-RUN] Would run PowerShell: {script}")
            return ''

        logger.debug(f"Running PowerShell: {script}")
        return self._execute(args, 'PowerShell script')

    def run_native(self, args: List[str]) -> str:
        """
        Run a native command such as icacls.

        Args:
            args: Program and arguments

        Returns:
            Stripped standard output ('' in dry-run mode)

        Raises:
            PowerShellError: On non-zero exit, timeout or missing executable
        """
        if self.dry_run:
            logger.info(f"[DRY-RUN] Would run: {subprocess.list2cmdline(args)}")
            return ''

        logger.debug(f"Running: {subprocess.list2cmdline(args)}")
        return self._execute(args, args[0])

    def _execute(self, args: List[str], description: str) -> str:
        try:
            completed = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except FileNotFoundError:
            raise PowerShellError(f"Executable not found: {args[0]}")
        except subprocess.TimeoutExpired:
            raise PowerShellError(f"{description} timed out after {self.timeout} seconds")

        if completed.returncode != 0:
            stderr = (completed.stderr or '').strip()
            detail = stderr or (completed.stdout or '').strip() or 'no output'
            raise PowerShellError(
                f"{description} failed with exit code {completed.returncode}: {detail}",
                returncode=completed.returncode,
                stderr=stderr
            )

        return (completed.stdout or '').strip()
