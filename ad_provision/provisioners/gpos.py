"""
Group policy object provisioning.

CSV columns: Name (required); Comment, LinkTarget, LinkEnabled. LinkTarget is
a container path resolved like the Path column of directory rows.
"""

import logging
from typing import Dict

from .base import ProvisionerBase, ProvisioningError, parse_bool
from ad_provision.powershell import build_command, quote

logger = logging.getLogger(__name__)


class GPOProvisioner(ProvisionerBase):
    """Creates one GPO per row and links it to a container when asked."""

    category = 'gpos'
    required_columns = ['Name']
    optional_columns = ['Comment', 'LinkTarget', 'LinkEnabled']

    def validate_settings(self, rows=()):
        # Link targets are resolved under DomainDN
        if any(row.get('LinkTarget') for row in rows):
            self.domain_dn()

    def build_script(self, row: Dict[str, str]) -> str:
        name = row.get('Name', '')
        if not name:
            raise ProvisioningError("Name is empty")

        new_gpo = build_command('New-GPO', {
            'Name': name,
            'Comment': row.get('Comment'),
            'ErrorAction': 'Stop',
        })
        lines = [
            f"$gpo = Get-GPO -Name {quote(name)} -ErrorAction SilentlyContinue",
            f"if ($gpo) {{ $state = 'exists' }} else {{ $gpo = {new_gpo}; $state = 'created' }}",
        ]

        if row.get('LinkTarget'):
            target = self.resolve_container(row['LinkTarget'])
            link_enabled = 'Yes' if parse_bool(row.get('LinkEnabled'), True, 'LinkEnabled') else 'No'
            new_link = build_command('New-GPLink', {
                'Target': target,
                'LinkEnabled': link_enabled,
                'ErrorAction': 'Stop',
            })
            lines.extend([
                f"$links = (Get-GPInheritance -Target {quote(target)} -ErrorAction Stop).GpoLinks",
                f"if (-not ($links | Where-Object {{ $_.GpoId -eq $gpo.Id }})) "
                f"{{ {new_link} -Guid $gpo.Id | Out-Null }}",
            ])

        lines.append("$state")
        return '; '.join(lines)

    def provision(self, row: Dict[str, str]) -> str:
        output = self.shell.run_script(self.build_script(row))
        if self.context.dry_run:
            return 'planned'

        outcome = output.splitlines()[-1].strip() if output else ''
        if outcome not in ('created', 'exists'):
            raise ProvisioningError(f"Unexpected output from GPO creation: '{output}'")
        return outcome
