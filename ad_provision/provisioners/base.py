"""
Base provisioner interface and common row handling.

This module defines the abstract base class that all category provisioners must
implement, along with the helpers they share for resolving container DNs,
file server paths, identities and boolean cells.
"""

import os
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional, Sequence

from ad_provision.sources import Settings, SourceError

logger = logging.getLogger(__name__)

TRUE_VALUES = ('true', 'yes', 'y', '1')
FALSE_VALUES = ('false', 'no', 'n', '0')

# Resolved by the local machine, never under the domain prefix
WELL_KNOWN_PRINCIPALS = frozenset([
    'everyone',
    'system',
    'authenticated users',
    'creator owner',
    'administrators',
    'users',
    'network service',
    'local service',
])


class ProvisioningError(Exception):
    """Raised when a row cannot be provisioned."""
    pass


class ProvisioningContext:
    """Collaborators shared by every provisioner in a run."""

    def __init__(self, settings: Settings, directory=None, shell=None, dry_run: bool = False):
        """
        Args:
            settings: Environment settings from the key=value file
            directory: DirectoryClient for directory categories
            shell: PowerShellRunner for share, permission and GPO categories
            dry_run: Log intended changes instead of applying them
        """
        self.settings = settings
        self.directory = directory
        self.shell = shell
        self.dry_run = dry_run


class ProvisionerBase(ABC):
    """
    Abstract base class for category provisioners.

    Each subclass handles one manifest category. ``provision`` is called once
    per CSV row, in file order, and performs exactly one provisioning call for
    that row. It returns an outcome string: ``created``, ``exists``,
    ``applied`` or ``planned`` (dry-run). Row problems are raised as
    exceptions; the orchestrator records them and continues.
    """

    category: str = ''
    required_columns: List[str] = []
    optional_columns: List[str] = []

    def __init__(self, context: ProvisioningContext):
        self.context = context
        self.settings = context.settings

    @property
    def directory(self):
        if self.context.directory is None:
            raise ProvisioningError(f"No directory client available for category '{self.category}'")
        return self.context.directory

    @property
    def shell(self):
        if self.context.shell is None:
            raise ProvisioningError(f"No command runner available for category '{self.category}'")
        return self.context.shell

    @abstractmethod
    def provision(self, row: Dict[str, str]) -> str:
        """
        Provision one CSV row.

        Args:
            row: Stripped CSV values keyed by column name

        Returns:
            Outcome string

        Raises:
            ProvisioningError: If the row is invalid
        """
        pass

    def describe(self, row: Dict[str, str]) -> str:
        """Short label for the object a row targets, used in logs and reports."""
        return row.get('Name') or row.get('Path') or '<unnamed>'

    def validate_settings(self, rows: Sequence[Dict[str, str]] = ()):
        """
        Check the settings this category depends on before any row runs.

        Args:
            rows: The category's CSV rows, for checks that depend on which
                optional columns are filled in
        """
        pass

    # Shared helpers

    def domain_dn(self) -> str:
        try:
            return self.settings.require('DomainDN')
        except SourceError as e:
            raise ProvisioningError(str(e))

    def resolve_container(self, path: Optional[str]) -> str:
        """
        Resolve a ``Path`` cell to a full container DN.

        Empty paths mean the domain root; paths that already end with the
        domain DN are used as-is; anything else is taken as relative to it.
        """
        domain_dn = self.domain_dn()
        path = (path or '').strip().strip(',')
        if not path:
            return domain_dn
        if normalize_dn(path).endswith(normalize_dn(domain_dn)):
            return path
        return f"{path},{domain_dn}"

    def resolve_share_path(self, path: str) -> str:
        """Resolve a folder path against ShareRoot unless it is already absolute or UNC."""
        if not path:
            raise ProvisioningError("Path is empty")
        if os.path.isabs(path) or path.startswith('\\\\'):
            return path
        relative = path.replace('\\', os.sep).replace('/', os.sep).strip(os.sep)
        return os.path.join(self.settings.share_root, relative)

    def qualify_identity(self, identity: str) -> str:
        """
        Prefix bare account names with the NetBIOS domain name when one is configured.

        Qualified names (``DOMAIN\\name``, ``name@domain``), SID references
        (``*S-1-...``) and well-known local principals are returned unchanged.
        """
        identity = identity.strip()
        if not identity:
            raise ProvisioningError("Identity is empty")
        netbios = self.settings.netbios_name
        if not netbios or '\\' in identity or '@' in identity:
            return identity
        if identity.startswith('*') or identity.lower() in WELL_KNOWN_PRINCIPALS:
            return identity
        return f"{netbios}\\{identity}"


def normalize_dn(dn: str) -> str:
    """Lower-case a DN and remove whitespace around separators for comparison."""
    parts = [part.strip() for part in dn.split(',')]
    return ','.join('='.join(piece.strip() for piece in part.split('=', 1)) for part in parts).lower()


def parse_bool(value: Optional[str], default: bool, column: str = 'value') -> bool:
    """
    Parse a boolean CSV cell.

    Raises:
        ProvisioningError: If the value is not a recognised boolean
    """
    if value is None or value.strip() == '':
        return default
    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ProvisioningError(f"Invalid boolean for {column}: '{value}'")


def split_list(value: Optional[str]) -> List[str]:
    """Split a semicolon-separated cell into trimmed, non-empty items."""
    if not value:
        return []
    return [item.strip() for item in value.split(';') if item.strip()]
