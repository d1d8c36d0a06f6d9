"""
Group provisioning.

CSV columns: Name (required), Path, Scope, Category, Description, MemberOf.

A group listed in MemberOf is nested into that parent group, which must appear
earlier in the file (or already exist in the directory).
"""

import logging
from typing import Dict
from ldap3.utils.dn import escape_rdn

from .base import ProvisionerBase, ProvisioningError

logger = logging.getLogger(__name__)

GROUP_SCOPES = {
    'global': 0x00000002,
    'domainlocal': 0x00000004,
    'universal': 0x00000008,
}

SECURITY_ENABLED = 0x80000000


def group_type(scope: str, category: str) -> int:
    """
    Compute the signed 32-bit ``groupType`` value for a scope and category.

    Raises:
        ProvisioningError: On unknown scope or category
    """
    scope_key = (scope or 'Global').replace(' ', '').lower()
    if scope_key not in GROUP_SCOPES:
        raise ProvisioningError(f"Unknown group scope: '{scope}'")

    category_key = (category or 'Security').strip().lower()
    if category_key not in ('security', 'distribution'):
        raise ProvisioningError(f"Unknown group category: '{category}'")

    value = GROUP_SCOPES[scope_key]
    if category_key == 'security':
        value |= SECURITY_ENABLED
    # AD stores groupType as a signed integer
    if value >= 0x80000000:
        value -= 0x100000000
    return value


class GroupProvisioner(ProvisionerBase):
    """Creates one group per row and optionally nests it in a parent group."""

    category = 'groups'
    required_columns = ['Name']
    optional_columns = ['Path', 'Scope', 'Category', 'Description', 'MemberOf']

    def validate_settings(self, rows=()):
        self.domain_dn()

    def build_dn(self, row: Dict[str, str]) -> str:
        name = row.get('Name', '')
        if not name:
            raise ProvisioningError("Name is empty")
        return f"CN={escape_rdn(name)},{self.resolve_container(row.get('Path'))}"

    def describe(self, row: Dict[str, str]) -> str:
        try:
            return self.build_dn(row)
        except ProvisioningError:
            return super().describe(row)

    def provision(self, row: Dict[str, str]) -> str:
        dn = self.build_dn(row)
        attributes = {
            'cn': row['Name'],
            'sAMAccountName': row['Name'],
            'groupType': group_type(row.get('Scope'), row.get('Category')),
        }
        if row.get('Description'):
            attributes['description'] = row['Description']

        outcome = self.directory.add_entry(dn, ['top', 'group'], attributes)

        parent = row.get('MemberOf')
        if parent:
            parent_dn = self.directory.find_group_dn(parent, self.domain_dn())
            self.directory.add_group_member(parent_dn, dn)
            logger.debug(f"Nested group {row['Name']} in {parent}")

        return outcome
