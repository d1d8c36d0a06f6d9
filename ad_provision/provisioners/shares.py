"""
SMB share provisioning.

CSV columns: Name, Path (required); Description, FullAccess, ChangeAccess,
ReadAccess. Access columns hold semicolon-separated identities.
"""

import logging
from typing import Dict

from .base import ProvisionerBase, ProvisioningError, split_list
from ad_provision.powershell import build_command, quote

logger = logging.getLogger(__name__)

ACCESS_COLUMNS = ('FullAccess', 'ChangeAccess', 'ReadAccess')


class ShareProvisioner(ProvisionerBase):
    """Creates one SMB share per row unless a share with that name exists."""

    category = 'shares'
    required_columns = ['Name', 'Path']
    optional_columns = ['Description'] + list(ACCESS_COLUMNS)

    def build_script(self, row: Dict[str, str]) -> str:
        name = row.get('Name', '')
        if not name:
            raise ProvisioningError("Name is empty")

        params = {
            'Name': name,
            'Path': self.resolve_share_path(row.get('Path', '')),
            'Description': row.get('Description'),
        }
        for column in ACCESS_COLUMNS:
            params[column] = [self.qualify_identity(identity) for identity in split_list(row.get(column))]
        params['ErrorAction'] = 'Stop'

        return (
            f"if (Get-SmbShare -Name {quote(name)} -ErrorAction SilentlyContinue) {{ 'exists' }} "
            f"else {{ {build_command('New-SmbShare', params)} | Out-Null; 'created' }}"
        )

    def provision(self, row: Dict[str, str]) -> str:
        output = self.shell.run_script(self.build_script(row))
        if self.context.dry_run:
            return 'planned'

        outcome = output.splitlines()[-1].strip() if output else ''
        if outcome not in ('created', 'exists'):
            raise ProvisioningError(f"Unexpected output from share creation: '{output}'")
        return outcome
