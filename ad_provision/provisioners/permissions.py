"""
Folder permission provisioning.

CSV columns: Path, Identity, Rights (required); Type, Inheritance,
DisableInheritance. Each row becomes one icacls call adding one access
control entry to the folder.
"""

import logging
from typing import Dict, List

from .base import ProvisionerBase, ProvisioningError, parse_bool

logger = logging.getLogger(__name__)

RIGHTS = {
    'fullcontrol': 'F',
    'modify': 'M',
    'readandexecute': 'RX',
    'read': 'R',
    'write': 'W',
    'listfolder': '(RD,X)',
}

INHERITANCE = {
    'all': '(OI)(CI)',
    'folders': '(CI)',
    'files': '(OI)',
    'none': '',
}


class PermissionProvisioner(ProvisionerBase):
    """Grants or denies one identity access to one folder per row."""

    category = 'permissions'
    required_columns = ['Path', 'Identity', 'Rights']
    optional_columns = ['Type', 'Inheritance', 'DisableInheritance']

    def describe(self, row: Dict[str, str]) -> str:
        return f"{row.get('Path', '')} -> {row.get('Identity', '')}"

    def build_args(self, row: Dict[str, str]) -> List[str]:
        path = self.resolve_share_path(row.get('Path', ''))
        identity = self.qualify_identity(row.get('Identity', ''))

        rights_key = row.get('Rights', '').replace(' ', '').lower()
        if rights_key not in RIGHTS:
            raise ProvisioningError(f"Unknown rights: '{row.get('Rights', '')}'")

        inheritance_key = (row.get('Inheritance') or 'All').strip().lower()
        if inheritance_key not in INHERITANCE:
            raise ProvisioningError(f"Unknown inheritance: '{row.get('Inheritance')}'")

        entry_type = (row.get('Type') or 'Allow').strip().lower()
        if entry_type not in ('allow', 'deny'):
            raise ProvisioningError(f"Unknown access type: '{row.get('Type')}'")

        args = [self.shell.icacls, path]
        if parse_bool(row.get('DisableInheritance'), False, 'DisableInheritance'):
            # Keep inherited entries as explicit copies
            args.append('/inheritance:d')
        args.extend([
            '/grant' if entry_type == 'allow' else '/deny',
            f"{identity}:{INHERITANCE[inheritance_key]}{RIGHTS[rights_key]}"
        ])
        return args

    def provision(self, row: Dict[str, str]) -> str:
        self.shell.run_native(self.build_args(row))
        return 'planned' if self.context.dry_run else 'applied'
