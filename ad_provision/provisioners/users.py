"""
User account provisioning.

CSV columns: SamAccountName, FirstName, LastName (required); Name, DisplayName,
Path, Password, Email, Department, Title, Description, Groups, Enabled,
ChangePasswordAtLogon.

Accounts are created disabled, given their password and then enabled, since
Active Directory refuses enabled accounts without a password. Users without
any password (row or DefaultPassword) stay disabled.
"""

import logging
from typing import Dict, Any
from ldap3.utils.dn import escape_rdn

from .base import ProvisionerBase, ProvisioningError, parse_bool, split_list
from ad_provision.directory_client import UAC_NORMAL_ACCOUNT, UAC_ACCOUNTDISABLE
from ad_provision.logging_setup import audit_logger

logger = logging.getLogger(__name__)

OPTIONAL_ATTRIBUTES = {
    'Email': 'mail',
    'Department': 'department',
    'Title': 'title',
    'Description': 'description',
}


class UserProvisioner(ProvisionerBase):
    """Creates one user account per row and applies its group memberships."""

    category = 'users'
    required_columns = ['SamAccountName', 'FirstName', 'LastName']
    optional_columns = ['Name', 'DisplayName', 'Path', 'Password', 'Email', 'Department',
                        'Title', 'Description', 'Groups', 'Enabled', 'ChangePasswordAtLogon']

    def validate_settings(self, rows=()):
        self.domain_dn()

    def common_name(self, row: Dict[str, str]) -> str:
        name = row.get('Name') or f"{row.get('FirstName', '')} {row.get('LastName', '')}".strip()
        if not name:
            raise ProvisioningError("User has no Name, FirstName or LastName")
        return name

    def build_dn(self, row: Dict[str, str]) -> str:
        return f"CN={escape_rdn(self.common_name(row))},{self.resolve_container(row.get('Path'))}"

    def describe(self, row: Dict[str, str]) -> str:
        return row.get('SamAccountName') or super().describe(row)

    def build_attributes(self, row: Dict[str, str]) -> Dict[str, Any]:
        sam = row.get('SamAccountName', '')
        if not sam:
            raise ProvisioningError("SamAccountName is empty")

        attributes = {
            'cn': self.common_name(row),
            'sAMAccountName': sam,
            'givenName': row['FirstName'],
            'sn': row['LastName'],
            'displayName': row.get('DisplayName') or self.common_name(row),
            'userAccountControl': UAC_NORMAL_ACCOUNT | UAC_ACCOUNTDISABLE,
        }

        upn_suffix = self.settings.upn_suffix
        if upn_suffix:
            attributes['userPrincipalName'] = f"{sam}@{upn_suffix}"

        for column, attribute in OPTIONAL_ATTRIBUTES.items():
            if row.get(column):
                attributes[attribute] = row[column]

        # The server rejects empty attribute values
        return {key: value for key, value in attributes.items() if value != ''}

    def provision(self, row: Dict[str, str]) -> str:
        enabled = parse_bool(row.get('Enabled'), True, 'Enabled')
        must_change = parse_bool(row.get('ChangePasswordAtLogon'), False, 'ChangePasswordAtLogon')
        dn = self.build_dn(row)
        sam = row.get('SamAccountName', '')

        outcome = self.directory.add_entry(
            dn,
            ['top', 'person', 'organizationalPerson', 'user'],
            self.build_attributes(row)
        )

        if outcome != 'exists':
            password = row.get('Password') or self.settings.default_password
            if password:
                self.directory.set_password(dn, password)
                if enabled:
                    self.directory.enable_account(dn, must_change)
                elif must_change:
                    self.directory.require_password_change(dn)
            elif enabled:
                logger.warning(f"No password for {sam}; account left disabled")

        for group in split_list(row.get('Groups')):
            group_dn = self.directory.find_group_dn(group, self.domain_dn())
            self.directory.add_group_member(group_dn, dn)
            audit_logger.log_membership(group, sam, True)

        return outcome
