"""
Main orchestrator for AD Bulk Provision.

This module contains the provisioning pipeline: it loads configuration and
input files, connects to the directory, then walks each category in
dependency order and provisions its CSV rows one by one, reporting failures
and continuing.
"""

import sys
import logging
import importlib
from datetime import datetime
from typing import Dict, Any, List, Optional

from ad_provision.config import load_config, ConfigurationError
from ad_provision.sources import (
    DIRECTORY_CATEGORIES,
    CATEGORY_ORDER,
    SourceError,
    load_manifest,
    load_settings,
    ordered_categories,
    read_rows,
)
from ad_provision.directory_client import DirectoryClient, DirectoryConnectionError
from ad_provision.powershell import PowerShellRunner
from ad_provision.provisioners import PROVISIONER_MODULES
from ad_provision.provisioners.base import ProvisionerBase, ProvisioningContext, ProvisioningError
from ad_provision.report import RunReport, RowResult
from ad_provision.logging_setup import setup_logging, get_logging_stats, audit_logger
from ad_provision.notifications import (
    format_runtime,
    send_failure_notification,
    send_category_error_notification,
    send_directory_connection_failure,
    send_run_summary
)

logger = logging.getLogger(__name__)


class ProvisioningRunError(Exception):
    """Base exception for orchestration errors."""
    pass


class ProvisioningOrchestrator:
    """
    Main orchestrator for CSV-driven provisioning.

    Runs categories in dependency order and rows in file order, making one
    provisioning call per row and continuing past row failures.
    """

    def __init__(self, config_path: Optional[str] = None, dry_run: Optional[bool] = None,
                 only_categories: Optional[List[str]] = None):
        """
        Initialize provisioning orchestrator.

        Args:
            config_path: Path to configuration file
            dry_run: Override provisioning.dry_run from the configuration
            only_categories: Restrict the run to these categories
        """
        self.config = None
        self.config_path = config_path
        self.dry_run_override = dry_run
        self.only_categories = [category.lower() for category in (only_categories or [])]

        self.settings = None
        self.manifest = {}
        self.directory_client = None
        self.shell = None
        self.context = None
        self.report = RunReport()

        self.run_stats = {
            'dry_run': False,
            'categories_processed': 0,
            'categories_aborted': 0,
            'rows_processed': 0,
            'rows_failed': 0,
            'start_time': None,
            'end_time': None,
            'runtime_seconds': 0,
            'category_details': {}
        }

    @property
    def dry_run(self) -> bool:
        if self.dry_run_override is not None:
            return self.dry_run_override
        if self.config:
            return bool(self.config.get('provisioning', {}).get('dry_run', False))
        return False

    def run(self) -> int:
        """
        Run the complete provisioning process.

        Returns:
            Exit code: 0 success, 1 row failures, 2 configuration or input error,
            3 directory connection error, 4 unexpected error
        """
        try:
            self.run_stats['start_time'] = datetime.now()

            self._load_configuration()
            self._setup_logging()
            self.run_stats['dry_run'] = self.dry_run

            logger.info("Starting AD Bulk Provision" + (" (dry run)" if self.dry_run else ""))

            self._load_inputs()
            categories = self._selected_categories()
            self._preflight(categories)

            self._build_context(categories)
            self._process_categories(categories)

            self.run_stats['end_time'] = datetime.now()
            self.run_stats['runtime_seconds'] = (
                self.run_stats['end_time'] - self.run_stats['start_time']
            ).total_seconds()

            self._write_report()
            self._log_run_summary()
            self._send_run_summary()

            if self.run_stats['rows_failed'] > 0 or self.run_stats['categories_aborted'] > 0:
                logger.warning(f"Provisioning completed with {self.run_stats['rows_failed']} failed rows")
                return 1

            logger.info("Provisioning completed successfully")
            return 0

        except (ConfigurationError, SourceError) as e:
            logger.error(f"Configuration error: {e}")
            return 2
        except DirectoryConnectionError as e:
            logger.error(f"Directory connection error: {e}")
            self._send_directory_connection_failure(str(e))
            return 3
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            self._send_failure_notification("Provisioning Failed", f"Unexpected error: {e}")
            return 4
        finally:
            self._cleanup()

    def _load_configuration(self):
        """Load and validate configuration."""
        if self.config is not None:
            return
        try:
            self.config = load_config(self.config_path)
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}")
        audit_logger.log_configuration_access(self.config_path or 'config.yaml')

    def _setup_logging(self):
        """Configure logging based on configuration."""
        setup_logging(self.config.get('logging', {}))

    def _load_inputs(self):
        """Load the settings file and the manifest."""
        inputs_config = self.config['inputs']
        encoding = inputs_config.get('encoding', 'utf-8-sig')
        self.settings = load_settings(inputs_config.get('settings'), encoding)
        self.manifest = load_manifest(inputs_config['manifest'], encoding)

    def _selected_categories(self) -> List[str]:
        """Categories to run, in dependency order."""
        wanted = set(self.manifest)

        configured = self.config.get('provisioning', {}).get('categories') or []
        if configured:
            wanted &= set(configured)
        if self.only_categories:
            wanted &= set(self.only_categories)

        categories = ordered_categories(wanted)
        if not categories:
            logger.warning("No categories selected; nothing to provision")
        return categories

    def _preflight(self, categories: List[str]):
        """
        Read every selected CSV and check the settings each category needs
        for its rows before making any change.

        Raises:
            SourceError: If any input is unusable
        """
        encoding = self.config['inputs'].get('encoding', 'utf-8-sig')
        context = ProvisioningContext(self.settings, dry_run=self.dry_run)
        for category in categories:
            provisioner_class = self._load_provisioner_class(category)
            path = self.manifest[category]
            rows = read_rows(path, provisioner_class.required_columns, encoding)
            try:
                provisioner_class(context).validate_settings(rows)
            except ProvisioningError as e:
                raise SourceError(f"Category '{category}': {e}")

    def _build_context(self, categories: List[str]):
        """Create the directory client and command runner shared by provisioners."""
        directory_config = dict(self.config['directory'])
        directory_config['error_handling'] = self.config.get('error_handling', {})
        self.directory_client = DirectoryClient(directory_config, dry_run=self.dry_run)

        if not self.dry_run and any(category in DIRECTORY_CATEGORIES for category in categories):
            self._connect_directory()

        self.shell = PowerShellRunner(self.config.get('platform', {}), dry_run=self.dry_run)
        self.context = ProvisioningContext(
            self.settings,
            directory=self.directory_client,
            shell=self.shell,
            dry_run=self.dry_run
        )

    def _connect_directory(self):
        """Establish the directory connection."""
        error_config = self.config.get('error_handling', {})
        try:
            self.directory_client.connect(
                max_retries=error_config.get('max_retries', 3),
                retry_wait=error_config.get('retry_wait_seconds', 5)
            )
            audit_logger.log_directory_bind(self.directory_client.server_url, self.directory_client.bind_dn, True)
        except DirectoryConnectionError:
            audit_logger.log_directory_bind(self.directory_client.server_url, self.directory_client.bind_dn, False)
            self.directory_client = None
            raise

    def _process_categories(self, categories: List[str]):
        """Process each selected category in dependency order."""
        for category in categories:
            try:
                aborted = self._process_category(category)
            except SourceError as e:
                logger.error(f"Failed to read {category} rows: {e}")
                aborted = True
                self._send_failure_notification(f"Category Failed: {category}", str(e))

            if aborted:
                self.run_stats['categories_aborted'] += 1
            else:
                self.run_stats['categories_processed'] += 1

    def _process_category(self, category: str) -> bool:
        """
        Provision every row of one category.

        Returns:
            True if the category was aborted by the error limit
        """
        path = self.manifest[category]
        category_start_time = datetime.now()
        logger.info(f"Processing category: {category} ({path})")

        category_stats = {
            'file': path,
            'rows_processed': 0,
            'rows_failed': 0,
            'outcomes': {},
            'aborted': False,
            'runtime_seconds': 0
        }
        self.run_stats['category_details'][category] = category_stats

        max_errors = self.config.get('error_handling', {}).get('max_errors_per_category', 0)
        error_messages = []

        try:
            provisioner = self._load_provisioner(category)
            rows = read_rows(path, provisioner.required_columns, self.config['inputs'].get('encoding', 'utf-8-sig'))

            for row in rows:
                result = self._provision_row(provisioner, category, path, row)

                category_stats['rows_processed'] += 1
                self.run_stats['rows_processed'] += 1
                category_stats['outcomes'][result.outcome] = category_stats['outcomes'].get(result.outcome, 0) + 1

                if result.failed:
                    category_stats['rows_failed'] += 1
                    self.run_stats['rows_failed'] += 1
                    error_messages.append(f"line {result.line} ({result.target}): {result.message}")

                    if max_errors and category_stats['rows_failed'] >= max_errors:
                        logger.error(f"Aborting category {category} after {category_stats['rows_failed']} errors")
                        category_stats['aborted'] = True
                        self._send_category_error_notification(category, category_stats['rows_failed'], error_messages)
                        break
        finally:
            category_stats['runtime_seconds'] = (datetime.now() - category_start_time).total_seconds()
            logger.info(f"Completed category: {category} in {category_stats['runtime_seconds']:.2f} seconds")

        return category_stats['aborted']

    def _provision_row(self, provisioner: ProvisionerBase, category: str, path: str, row) -> RowResult:
        """Make the provisioning call for one row and record its outcome."""
        target = provisioner.describe(row)
        message = ''
        try:
            outcome = provisioner.provision(row)
            logger.info(f"{category} line {row.line_number}: {target} {outcome}")
        except Exception as e:
            outcome = 'failed'
            message = str(e)
            logger.error(f"{category} line {row.line_number}: {target} failed: {e}")

        audit_logger.log_row(category, target, outcome, message)
        return self.report.add(RowResult(category, path, row.line_number, target, outcome, message))

    def _load_provisioner_class(self, category: str):
        """Dynamically load the provisioner module for a category and return its class."""
        module_name = PROVISIONER_MODULES.get(category)
        if not module_name:
            raise ProvisioningRunError(f"No provisioner registered for category {category}")

        try:
            module = importlib.import_module(f"ad_provision.provisioners.{module_name}")
        except ImportError as e:
            raise ProvisioningRunError(f"Failed to import provisioner module {module_name}: {e}")

        for attr_name in dir(module):
            attr = getattr(module, attr_name)
            if (isinstance(attr, type) and
                    issubclass(attr, ProvisionerBase) and
                    attr is not ProvisionerBase and
                    attr.category == category):
                return attr

        raise ProvisioningRunError(f"No ProvisionerBase subclass for '{category}' found in module {module_name}")

    def _load_provisioner(self, category: str) -> ProvisionerBase:
        """Create the provisioner instance for a category."""
        return self._load_provisioner_class(category)(self.context)

    def _write_report(self):
        """Write the CSV result report if enabled."""
        report_config = self.config.get('report', {})
        if not report_config.get('enabled', True):
            return
        try:
            self.report.write_csv(report_config.get('path', 'reports/provision_report.csv'))
        except OSError as e:
            logger.error(f"Failed to write result report: {e}")

    def _send_failure_notification(self, title: str, error_message: str):
        """Send email notification for failures."""
        try:
            notifications_config = (self.config or {}).get('notifications', {})
            send_failure_notification(title, error_message, notifications_config)
        except Exception as e:
            logger.error(f"Failed to send failure notification: {e}")

    def _send_category_error_notification(self, category: str, error_count: int, errors: List[str]):
        """Send email notification for an aborted category."""
        try:
            notifications_config = self.config.get('notifications', {})
            send_category_error_notification(category, error_count, errors, notifications_config)
        except Exception as e:
            logger.error(f"Failed to send category error notification: {e}")

    def _send_directory_connection_failure(self, error_message: str):
        """Send email notification for directory connection failure."""
        try:
            notifications_config = self.config.get('notifications', {})
            retry_count = self.config.get('error_handling', {}).get('max_retries', 3)
            send_directory_connection_failure(error_message, notifications_config, retry_count)
        except Exception as e:
            logger.error(f"Failed to send directory failure notification: {e}")

    def _send_run_summary(self):
        """Send email summary for the completed run."""
        try:
            notifications_config = self.config.get('notifications', {})
            send_run_summary(self.run_stats, notifications_config)
        except Exception as e:
            logger.error(f"Failed to send run summary: {e}")

    def _log_run_summary(self):
        """Log final run statistics."""
        stats = self.run_stats

        logger.info("=== Provisioning Summary ===")
        logger.info(f"Total runtime: {format_runtime(stats['runtime_seconds'])}")
        logger.info(f"Dry run: {stats['dry_run']}")
        logger.info(f"Categories processed: {stats['categories_processed']}")
        logger.info(f"Categories aborted: {stats['categories_aborted']}")
        logger.info(f"Rows processed: {stats['rows_processed']}")
        logger.info(f"Rows failed: {stats['rows_failed']}")

        for category, category_stats in stats.get('category_details', {}).items():
            logger.info(f"--- {category} ---")
            logger.info(f"  Runtime: {category_stats['runtime_seconds']:.2f}s")
            logger.info(f"  Rows processed: {category_stats['rows_processed']}")
            logger.info(f"  Rows failed: {category_stats['rows_failed']}")
            for outcome, count in sorted(category_stats['outcomes'].items()):
                logger.info(f"  {outcome}: {count}")

    def health_check(self) -> Dict[str, Any]:
        """
        Perform a health check of configuration, inputs and connectivity.

        Returns:
            Dictionary containing health status and details
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        try:
            self._load_configuration()
            health_status['checks']['configuration'] = {
                'status': 'pass',
                'message': 'Configuration loaded successfully'
            }
        except Exception as e:
            health_status['checks']['configuration'] = {
                'status': 'fail',
                'message': f'Configuration error: {e}'
            }
            health_status['status'] = 'unhealthy'

        if not self.config:
            return health_status

        try:
            self._setup_logging()
            health_status['checks']['logging'] = {
                'status': 'pass',
                'message': 'Logging configured',
                'details': get_logging_stats()
            }
        except Exception as e:
            health_status['checks']['logging'] = {
                'status': 'fail',
                'message': f'Logging setup failed: {e}'
            }
            health_status['status'] = 'unhealthy'

        categories = []
        try:
            self._load_inputs()
            categories = self._selected_categories()
            self._preflight(categories)
            health_status['checks']['inputs'] = {
                'status': 'pass',
                'message': f"Inputs valid for categories: {', '.join(categories) or 'none'}"
            }
        except Exception as e:
            health_status['checks']['inputs'] = {
                'status': 'fail',
                'message': f'Input error: {e}'
            }
            health_status['status'] = 'unhealthy'

        if any(category in DIRECTORY_CATEGORIES for category in categories):
            try:
                with DirectoryClient(self.config['directory']) as test_client:
                    test_client.connect(max_retries=1, retry_wait=1)
                    if not test_client.test_connection():
                        raise DirectoryConnectionError("Root DSE search failed")
                    connection_stats = test_client.get_connection_stats()
                health_status['checks']['directory'] = {
                    'status': 'pass',
                    'message': 'Directory connection successful',
                    'details': connection_stats
                }
            except Exception as e:
                health_status['checks']['directory'] = {
                    'status': 'fail',
                    'message': f'Directory connection failed: {e}'
                }
                health_status['status'] = 'unhealthy'
        else:
            health_status['checks']['directory'] = {
                'status': 'skip',
                'message': 'No directory categories selected'
            }

        provisioner_checks = {}
        for category in CATEGORY_ORDER:
            try:
                self._load_provisioner_class(category)
                provisioner_checks[category] = {
                    'status': 'pass',
                    'message': 'Module loaded successfully'
                }
            except Exception as e:
                provisioner_checks[category] = {
                    'status': 'fail',
                    'message': f'Module loading failed: {e}'
                }
                health_status['status'] = 'unhealthy'
        health_status['checks']['provisioners'] = provisioner_checks

        notifications_config = self.config.get('notifications', {})
        if notifications_config.get('enable_email', False):
            required_fields = ['smtp_server', 'email_from', 'email_to']
            missing_fields = [f for f in required_fields if not notifications_config.get(f)]
            if missing_fields:
                health_status['checks']['notifications'] = {
                    'status': 'fail',
                    'message': f'Notification configuration invalid: missing {missing_fields}'
                }
                health_status['status'] = 'unhealthy'
            else:
                health_status['checks']['notifications'] = {
                    'status': 'pass',
                    'message': 'Email notification configuration valid'
                }
        else:
            health_status['checks']['notifications'] = {
                'status': 'skip',
                'message': 'Email notifications disabled'
            }

        return health_status

    def _cleanup(self):
        """Clean up resources."""
        if self.directory_client:
            self.directory_client.disconnect()


def main():
    """Main entry point for the application."""
    import argparse
    import json

    parser = argparse.ArgumentParser(description='Provision AD objects, folders, shares, ACLs and GPOs from CSV files')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--dry-run', action='store_true', default=None,
                        help='Log intended changes without applying them')
    parser.add_argument('--only', action='append', choices=CATEGORY_ORDER, metavar='CATEGORY',
                        help=f"Only run this category (repeatable): {', '.join(CATEGORY_ORDER)}")
    parser.add_argument('--health-check', action='store_true',
                        help='Perform health check instead of provisioning')
    parser.add_argument('--test-email', action='store_true',
                        help='Send test email notification')

    args = parser.parse_args()

    orchestrator = ProvisioningOrchestrator(
        config_path=args.config,
        dry_run=args.dry_run,
        only_categories=args.only
    )

    if args.health_check:
        health_status = orchestrator.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(0 if health_status['status'] == 'healthy' else 1)

    elif args.test_email:
        try:
            orchestrator._load_configuration()
            notifications_config = orchestrator.config.get('notifications', {})

            from ad_provision import notifications
            if notifications.test_notification_config(notifications_config):
                print("Test email sent successfully")
                sys.exit(0)
            else:
                print("Failed to send test email")
                sys.exit(1)
        except ConfigurationError as e:
            print(f"Error testing email: {e}")
            sys.exit(1)

    else:
        sys.exit(orchestrator.run())


if __name__ == "__main__":
    main()
