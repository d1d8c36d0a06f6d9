#!/usr/bin/env python3
"""
Tests for email notifications.
"""

import os
import sys
import unittest
from unittest.mock import patch, MagicMock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ad_provision import notifications


class TestNotifications(unittest.TestCase):

    def setUp(self):
        self.config = {
            'enable_email': True,
            'email_on_failure': True,
            'email_on_success': True,
            'smtp_server': 'smtp.corp.example.com',
            'smtp_port': 587,
            'smtp_tls': True,
            'smtp_username': 'provision@corp.example.com',
            'smtp_password': 'mail-secret',
            'email_from': 'provision@corp.example.com',
            'email_to': ['it-ops@corp.example.com']
        }

    def test_disabled_by_default(self):
        with patch('ad_provision.notifications.smtplib.SMTP') as mock_smtp:
            self.assertFalse(notifications.send_email('subject', 'body', {}))
        mock_smtp.assert_not_called()

    @patch('ad_provision.notifications.smtplib.SMTP')
    def test_send_email_with_starttls(self, mock_smtp):
        server = MagicMock()
        mock_smtp.return_value = server

        self.assertTrue(notifications.send_email('subject', 'body', self.config))

        mock_smtp.assert_called_once_with('smtp.corp.example.com', 587)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with('provision@corp.example.com', 'mail-secret')
        server.sendmail.assert_called_once()
        server.quit.assert_called_once()

    @patch('ad_provision.notifications.smtplib.SMTP_SSL')
    def test_send_email_ssl_port(self, mock_smtp_ssl):
        self.config['smtp_port'] = 465
        self.assertTrue(notifications.send_email('subject', 'body', self.config))
        mock_smtp_ssl.assert_called_once_with('smtp.corp.example.com', 465)

    @patch('ad_provision.notifications.smtplib.SMTP')
    def test_smtp_failure_returns_false(self, mock_smtp):
        mock_smtp.side_effect = OSError('connection refused')
        self.assertFalse(notifications.send_email('subject', 'body', self.config))

    def test_missing_recipients(self):
        self.config['email_to'] = []
        self.assertFalse(notifications.send_email('subject', 'body', self.config))

    @patch('ad_provision.notifications.send_email', return_value=True)
    def test_category_error_notification_truncates(self, mock_send):
        errors = [f"line {n}: failed" for n in range(2, 15)]

        notifications.send_category_error_notification('users', 13, errors, self.config)

        subject, body, _ = mock_send.call_args.args
        self.assertEqual(subject, 'AD Bulk Provision Alert: users aborted')
        self.assertIn('10. line 11: failed', body)
        self.assertIn('... and 3 more errors', body)

    @patch('ad_provision.notifications.send_email', return_value=True)
    def test_run_summary_body(self, mock_send):
        run_stats = {
            'dry_run': True,
            'runtime_seconds': 75,
            'categories_processed': 2,
            'categories_aborted': 0,
            'rows_processed': 5,
            'rows_failed': 1,
            'category_details': {
                'ous': {'runtime_seconds': 1.5, 'outcomes': {'planned': 4, 'failed': 1}}
            }
        }

        notifications.send_run_summary(run_stats, self.config)

        subject, body, _ = mock_send.call_args.args
        self.assertTrue(subject.endswith('(dry run)'))
        self.assertIn('Total runtime: 1m 15.0s', body)
        self.assertIn('Rows failed: 1', body)
        self.assertIn('planned: 4', body)

    @patch('ad_provision.notifications.send_email')
    def test_run_summary_skipped_unless_enabled(self, mock_send):
        self.config['email_on_success'] = False
        self.assertFalse(notifications.send_run_summary({}, self.config))
        mock_send.assert_not_called()

    @patch('ad_provision.notifications.send_email', return_value=True)
    def test_directory_connection_failure(self, mock_send):
        notifications.send_directory_connection_failure('timed out', self.config, retry_count=3)

        subject, body, _ = mock_send.call_args.args
        self.assertIn('Directory Connection Failed', subject)
        self.assertIn('Retry Attempts: 3', body)

    def test_format_runtime(self):
        self.assertEqual(notifications.format_runtime(5), '5.00 seconds')
        self.assertEqual(notifications.format_runtime(125), '2m 5.0s')


if __name__ == '__main__':
    unittest.main()
