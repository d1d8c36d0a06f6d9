#!/usr/bin/env python3
"""
Unit tests for the directory client.

The ldap3 Server and Connection classes are mocked; the tests check the
calls made for each provisioning primitive and how server results map to
outcomes and errors.
"""

import os
import sys
import unittest
from unittest.mock import Mock, patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap3 import MODIFY_ADD, MODIFY_REPLACE
from ldap3.core.exceptions import LDAPSocketOpenError

from ad_provision.directory_client import (
    DirectoryClient,
    DirectoryConnectionError,
    DirectoryOperationError,
)


def make_config(**overrides):
    config = {
        'server_url': 'ldaps://dc01.corp.example.com:636',
        'bind_dn': 'CN=svc,DC=corp,DC=example,DC=com',
        'bind_password': 'secret',
        'error_handling': {'max_retries': 2, 'retry_wait_seconds': 0}
    }
    config.update(overrides)
    return config


class ConnectedClientTestCase(unittest.TestCase):
    """Provides a DirectoryClient with a mocked, bound connection."""

    def setUp(self):
        self.client = DirectoryClient(make_config())
        self.connection = Mock()
        self.connection.result = {'result': 0, 'description': 'success'}
        self.client.connection = self.connection
        self.client._connected = True


class TestInitialization(unittest.TestCase):

    def test_ldaps_url_enables_ssl(self):
        client = DirectoryClient(make_config())
        self.assertTrue(client.use_ssl)
        self.assertFalse(client.start_tls)
        self.assertEqual(client.max_retries, 2)

    def test_plain_ldap_without_tls_has_no_tls_config(self):
        client = DirectoryClient(make_config(server_url='ldap://dc01:389'))
        self.assertFalse(client.use_ssl)
        self.assertIsNone(client._create_tls_config())

    def test_start_tls_creates_tls_config(self):
        client = DirectoryClient(make_config(server_url='ldap://dc01:389', start_tls=True, verify_ssl=False))
        self.assertIsNotNone(client._create_tls_config())


class TestConnect(unittest.TestCase):

    @patch('ad_provision.directory_client.Connection')
    @patch('ad_provision.directory_client.Server')
    def test_connect_success(self, mock_server, mock_connection):
        connection = Mock()
        connection.open.return_value = True
        connection.bind.return_value = True
        mock_connection.return_value = connection

        client = DirectoryClient(make_config())
        self.assertTrue(client.connect())
        self.assertTrue(client.connected)
        mock_connection.assert_called_once()
        self.assertEqual(mock_connection.call_args.kwargs['user'], 'CN=svc,DC=corp,DC=example,DC=com')

    @patch('ad_provision.directory_client.time.sleep')
    @patch('ad_provision.directory_client.Connection')
    @patch('ad_provision.directory_client.Server')
    def test_connect_retries_then_fails(self, mock_server, mock_connection, mock_sleep):
        connection = Mock()
        connection.open.side_effect = LDAPSocketOpenError('unreachable')
        mock_connection.return_value = connection

        client = DirectoryClient(make_config())
        with self.assertRaises(DirectoryConnectionError) as cm:
            client.connect(max_retries=3, retry_wait=1)

        self.assertIn('after 3 attempts', str(cm.exception))
        self.assertEqual(mock_connection.call_count, 3)
        self.assertEqual(mock_sleep.call_count, 2)
        self.assertFalse(client.connected)

    @patch('ad_provision.directory_client.time.sleep')
    @patch('ad_provision.directory_client.Connection')
    @patch('ad_provision.directory_client.Server')
    def test_bind_failure(self, mock_server, mock_connection, mock_sleep):
        connection = Mock()
        connection.open.return_value = True
        connection.bind.return_value = False
        connection.result = {'description': 'invalidCredentials'}
        mock_connection.return_value = connection

        client = DirectoryClient(make_config())
        with self.assertRaises(DirectoryConnectionError) as cm:
            client.connect()
        self.assertIn('invalidCredentials', str(cm.exception))

    def test_disconnect_unbinds(self):
        client = DirectoryClient(make_config())
        connection = Mock()
        client.connection = connection
        client._connected = True

        client.disconnect()

        connection.unbind.assert_called_once()
        self.assertFalse(client.connected)
        self.assertIsNone(client.connection)


class TestAddEntry(ConnectedClientTestCase):

    def test_created(self):
        self.connection.add.return_value = True

        outcome = self.client.add_entry('OU=Corp,DC=corp,DC=example,DC=com',
                                        ['top', 'organizationalUnit'], {'ou': 'Corp'})

        self.assertEqual(outcome, 'created')
        self.connection.add.assert_called_once_with(
            'OU=Corp,DC=corp,DC=example,DC=com', ['top', 'organizationalUnit'], {'ou': 'Corp'}
        )

    def test_already_exists(self):
        self.connection.add.return_value = False
        self.connection.result = {'result': 68, 'description': 'entryAlreadyExists'}

        self.assertEqual(self.client.add_entry('OU=Corp,DC=corp', ['organizationalUnit'], {}), 'exists')

    def test_other_failure_raises(self):
        self.connection.add.return_value = False
        self.connection.result = {'result': 32, 'description': 'noSuchObject', 'message': 'parent missing'}

        with self.assertRaises(DirectoryOperationError) as cm:
            self.client.add_entry('OU=Child,OU=Missing,DC=corp', ['organizationalUnit'], {})
        self.assertIn('noSuchObject', str(cm.exception))
        self.assertIn('parent missing', str(cm.exception))

    def test_not_connected(self):
        self.client._connected = False
        with self.assertRaises(DirectoryOperationError):
            self.client.add_entry('OU=Corp,DC=corp', ['organizationalUnit'], {})

    def test_dry_run_makes_no_call(self):
        client = DirectoryClient(make_config(), dry_run=True)
        self.assertEqual(client.add_entry('OU=Corp,DC=corp', ['organizationalUnit'], {}), 'planned')


class TestGroupsAndAccounts(ConnectedClientTestCase):

    def test_find_group_dn(self):
        entry = Mock()
        entry.entry_dn = 'CN=All-Staff,OU=Groups,DC=corp'
        self.connection.search.return_value = True
        self.connection.entries = [entry]

        dn = self.client.find_group_dn('All-Staff', 'DC=corp')

        self.assertEqual(dn, 'CN=All-Staff,OU=Groups,DC=corp')
        kwargs = self.connection.search.call_args.kwargs
        self.assertEqual(kwargs['search_base'], 'DC=corp')
        self.assertEqual(kwargs['search_filter'], '(&(objectClass=group)(sAMAccountName=All-Staff))')

    def test_find_group_dn_escapes_filter(self):
        entry = Mock()
        entry.entry_dn = 'CN=x'
        self.connection.search.return_value = True
        self.connection.entries = [entry]

        self.client.find_group_dn('R&D (EU)*', 'DC=corp')

        search_filter = self.connection.search.call_args.kwargs['search_filter']
        self.assertIn('R&D \\28EU\\29\\2a', search_filter)

    def test_find_group_dn_not_found(self):
        self.connection.search.return_value = True
        self.connection.entries = []
        with self.assertRaises(DirectoryOperationError) as cm:
            self.client.find_group_dn('Missing', 'DC=corp')
        self.assertIn('Group not found', str(cm.exception))

    def test_add_group_member(self):
        self.connection.modify.return_value = True

        self.assertEqual(self.client.add_group_member('CN=G,DC=corp', 'CN=U,DC=corp'), 'added')
        self.connection.modify.assert_called_once_with('CN=G,DC=corp', {'member': [(MODIFY_ADD, ['CN=U,DC=corp'])]})

    def test_add_group_member_already_member(self):
        self.connection.modify.return_value = False
        self.connection.result = {'result': 68, 'description': 'entryAlreadyExists'}
        self.assertEqual(self.client.add_group_member('CN=G,DC=corp', 'CN=U,DC=corp'), 'exists')

    def test_set_password(self):
        self.connection.extend.microsoft.modify_password.return_value = True
        self.assertTrue(self.client.set_password('CN=U,DC=corp', 'P@ssw0rd!'))
        self.connection.extend.microsoft.modify_password.assert_called_once_with('CN=U,DC=corp', 'P@ssw0rd!')

    def test_set_password_rejected(self):
        self.connection.extend.microsoft.modify_password.return_value = False
        self.connection.result = {'result': 53, 'description': 'unwillingToPerform'}
        with self.assertRaises(DirectoryOperationError) as cm:
            self.client.set_password('CN=U,DC=corp', 'weak')
        self.assertIn('unwillingToPerform', str(cm.exception))

    def test_enable_account_with_password_change(self):
        self.connection.modify.return_value = True

        self.client.enable_account('CN=U,DC=corp', must_change_password=True)

        changes = self.connection.modify.call_args.args[1]
        self.assertEqual(changes['userAccountControl'], [(MODIFY_REPLACE, [512])])
        self.assertEqual(changes['pwdLastSet'], [(MODIFY_REPLACE, [0])])

    def test_require_password_change_leaves_account_state(self):
        self.connection.modify.return_value = True

        self.assertTrue(self.client.require_password_change('CN=U,DC=corp'))

        self.connection.modify.assert_called_once_with('CN=U,DC=corp', {'pwdLastSet': [(MODIFY_REPLACE, [0])]})

    def test_require_password_change_rejected(self):
        self.connection.modify.return_value = False
        self.connection.result = {'result': 50, 'description': 'insufficientAccessRights'}
        with self.assertRaises(DirectoryOperationError) as cm:
            self.client.require_password_change('CN=U,DC=corp')
        self.assertIn('insufficientAccessRights', str(cm.exception))

    def test_enable_account_without_password_change(self):
        self.connection.modify.return_value = True
        self.client.enable_account('CN=U,DC=corp')
        self.assertNotIn('pwdLastSet', self.connection.modify.call_args.args[1])


if __name__ == '__main__':
    unittest.main()
