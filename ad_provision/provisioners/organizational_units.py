"""
Organizational unit provisioning.

CSV columns: Name (required), Path, Description.
"""

import logging
from typing import Dict
from ldap3.utils.dn import escape_rdn

from .base import ProvisionerBase, ProvisioningError

logger = logging.getLogger(__name__)


class OrganizationalUnitProvisioner(ProvisionerBase):
    """Creates one organizational unit per row under its parent container."""

    category = 'ous'
    required_columns = ['Name']
    optional_columns = ['Path', 'Description']

    def validate_settings(self, rows=()):
        self.domain_dn()

    def build_dn(self, row: Dict[str, str]) -> str:
        name = row.get('Name', '')
        if not name:
            raise ProvisioningError("Name is empty")
        return f"OU={escape_rdn(name)},{self.resolve_container(row.get('Path'))}"

    def describe(self, row: Dict[str, str]) -> str:
        try:
            return self.build_dn(row)
        except ProvisioningError:
            return super().describe(row)

    def provision(self, row: Dict[str, str]) -> str:
        dn = self.build_dn(row)
        attributes = {'ou': row['Name']}
        if row.get('Description'):
            attributes['description'] = row['Description']

        return self.directory.add_entry(dn, ['top', 'organizationalUnit'], attributes)
