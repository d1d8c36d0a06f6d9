#!/usr/bin/env python3
"""
Unit tests for input file handling: settings file, manifest and category CSVs.
"""

import os
import sys
import shutil
import tempfile
import unittest
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ad_provision.sources import (
    CATEGORY_ORDER,
    Settings,
    SourceError,
    dn_to_dns_name,
    load_manifest,
    load_settings,
    ordered_categories,
    parse_settings,
    read_rows,
)


class TestSettings(unittest.TestCase):
    """Test cases for the key=value settings file."""

    def test_parse_ignores_comments_and_blank_lines(self):
        settings = parse_settings([
            "# environment\n",
            "\n",
            "; another comment\n",
            "DomainDN = DC=corp,DC=example,DC=com\n",
            "ShareRoot=D:\\Shares\n",
        ])
        self.assertEqual(len(settings), 2)
        self.assertEqual(settings.domain_dn, 'DC=corp,DC=example,DC=com')
        self.assertEqual(settings.share_root, 'D:\\Shares')

    def test_value_may_contain_equals(self):
        settings = parse_settings(["DefaultPassword=a=b=c\n"])
        self.assertEqual(settings.get('DefaultPassword'), 'a=b=c')

    def test_keys_are_case_insensitive(self):
        settings = parse_settings(["netbiosname=CORP\n"])
        self.assertEqual(settings.netbios_name, 'CORP')
        self.assertIn('NetBIOSName', settings)
        self.assertEqual(settings.as_dict(), {'netbiosname': 'CORP'})

    def test_line_without_equals_raises_with_line_number(self):
        with self.assertRaises(SourceError) as cm:
            parse_settings(["DomainDN=DC=corp\n", "ShareRoot\n"], 'settings.txt')
        self.assertIn('line 2', str(cm.exception))

    def test_empty_key_raises(self):
        with self.assertRaises(SourceError):
            parse_settings(["=value\n"])

    def test_empty_value_uses_default(self):
        settings = parse_settings(["ShareRoot=\n"])
        self.assertEqual(settings.share_root, '.')

    def test_require_missing_key(self):
        with self.assertRaises(SourceError) as cm:
            Settings({}, 'settings.txt').require('DomainDN')
        self.assertIn('DomainDN', str(cm.exception))

    def test_upn_suffix_derived_from_domain_dn(self):
        settings = Settings({'DomainDN': 'DC=corp,DC=example,DC=com'})
        self.assertEqual(settings.upn_suffix, 'corp.example.com')

    def test_upn_suffix_explicit(self):
        settings = Settings({'DomainDN': 'DC=corp,DC=example,DC=com', 'UPNSuffix': 'example.com'})
        self.assertEqual(settings.upn_suffix, 'example.com')

    def test_default_password_environment_override(self):
        settings = Settings({'DefaultPassword': 'FromFile1!'})
        with patch.dict(os.environ, {'AD_PROVISION_DEFAULT_PASSWORD': 'FromEnv1!'}):
            self.assertEqual(settings.default_password, 'FromEnv1!')

    def test_dn_to_dns_name(self):
        self.assertEqual(dn_to_dns_name('OU=x, DC=corp ,DC=local'), 'corp.local')


class TestFiles(unittest.TestCase):
    """Test cases that read real files."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp(prefix='ad_provision_sources_')

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write(self, name: str, content: str) -> str:
        path = os.path.join(self.temp_dir, name)
        with open(path, 'w', encoding='utf-8', newline='') as f:
            f.write(content)
        return path

    def test_load_settings_missing_file(self):
        with self.assertRaises(SourceError):
            load_settings(os.path.join(self.temp_dir, 'missing.txt'))

    def test_load_settings_none_returns_empty(self):
        self.assertEqual(len(load_settings(None)), 0)

    def test_load_settings_undecodable_file(self):
        path = os.path.join(self.temp_dir, 'settings.txt')
        with open(path, 'wb') as f:
            f.write(b"DomainDN=DC=corp\nNetBIOSName=\xff\xfeCORP\n")
        with self.assertRaises(SourceError) as cm:
            load_settings(path)
        self.assertIn('Could not read settings file', str(cm.exception))

    def test_load_settings_file(self):
        path = self.write('settings.txt', "DomainDN=DC=corp,DC=local\n")
        self.assertEqual(load_settings(path).domain_dn, 'DC=corp,DC=local')

    def test_read_rows_strips_and_numbers_rows(self):
        path = self.write('ous.csv', " Name , Path ,Description\nCorp, ,Root\n\n,,\nSales,OU=Corp, Sales team \n")
        rows = read_rows(path, ['Name'])

        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[0], {'Name': 'Corp', 'Path': '', 'Description': 'Root'})
        self.assertEqual(rows[0].line_number, 2)
        self.assertEqual(rows[1]['Description'], 'Sales team')
        self.assertEqual(rows[1].line_number, 5)

    def test_read_rows_keeps_file_order(self):
        path = self.write('ous.csv', "Name,Path\nChild,OU=Parent\nParent,\n")
        rows = read_rows(path, ['Name'])
        self.assertEqual([row['Name'] for row in rows], ['Child', 'Parent'])

    def test_read_rows_short_record_padded(self):
        path = self.write('groups.csv', "Name,Path,Description\nAll-Staff\n")
        rows = read_rows(path, ['Name'])
        self.assertEqual(rows[0]['Description'], '')

    def test_read_rows_quoted_commas(self):
        path = self.write('ous.csv', 'Name,Path\nFinance,"OU=Users,OU=Corp"\n')
        self.assertEqual(read_rows(path, ['Name'])[0]['Path'], 'OU=Users,OU=Corp')

    def test_read_rows_handles_bom(self):
        path = os.path.join(self.temp_dir, 'bom.csv')
        with open(path, 'w', encoding='utf-8-sig') as f:
            f.write("Name\nCorp\n")
        self.assertEqual(read_rows(path, ['Name'])[0]['Name'], 'Corp')

    def test_read_rows_missing_columns(self):
        path = self.write('users.csv', "SamAccountName,FirstName\njdoe,Jane\n")
        with self.assertRaises(SourceError) as cm:
            read_rows(path, ['SamAccountName', 'FirstName', 'LastName'])
        self.assertIn('LastName', str(cm.exception))

    def test_read_rows_empty_file(self):
        path = self.write('empty.csv', "")
        with self.assertRaises(SourceError):
            read_rows(path, ['Name'])

    def test_load_manifest_resolves_relative_paths(self):
        self.write('ous.csv', "Name\n")
        os.makedirs(os.path.join(self.temp_dir, 'data'))
        self.write(os.path.join('data', 'groups.csv'), "Name\n")
        path = self.write('manifest.csv', "Category,File\nGroups,data/groups.csv\nOUs,ous.csv\n")

        manifest = load_manifest(path)

        self.assertEqual(manifest['ous'], os.path.join(self.temp_dir, 'ous.csv'))
        self.assertEqual(manifest['groups'], os.path.join(self.temp_dir, 'data', 'groups.csv'))

    def test_load_manifest_unknown_category(self):
        path = self.write('manifest.csv', "Category,File\nprinters,printers.csv\n")
        with self.assertRaises(SourceError) as cm:
            load_manifest(path)
        self.assertIn('unknown category', str(cm.exception))

    def test_load_manifest_duplicate_category(self):
        self.write('ous.csv', "Name\n")
        path = self.write('manifest.csv', "Category,File\nous,ous.csv\nOUs,ous.csv\n")
        with self.assertRaises(SourceError) as cm:
            load_manifest(path)
        self.assertIn('duplicate', str(cm.exception))

    def test_load_manifest_missing_file(self):
        path = self.write('manifest.csv', "Category,File\nusers,users.csv\n")
        with self.assertRaises(SourceError) as cm:
            load_manifest(path)
        self.assertIn('file not found', str(cm.exception))


def test_ordered_categories_follow_dependency_order():
    assert ordered_categories(['gpos', 'users', 'ous', 'permissions']) == ['ous', 'users', 'permissions', 'gpos']
    assert ordered_categories(CATEGORY_ORDER[::-1]) == CATEGORY_ORDER


if __name__ == '__main__':
    unittest.main()
