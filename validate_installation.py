#!/usr/bin/env python3
"""
Validation script for AD Bulk Provision.

This script validates that all dependencies are installed correctly
and that the provisioning pipeline works end to end in dry-run mode
against the bundled example inputs.
"""

import sys
import importlib
from pathlib import Path

PROJECT_DIR = Path(__file__).resolve().parent
EXAMPLE_CONFIG = PROJECT_DIR / "examples" / "config.yaml"


def check_dependency(package_name, import_name=None):
    """Check if a package/module can be imported."""
    if import_name is None:
        import_name = package_name

    try:
        importlib.import_module(import_name)
        return True, f"✓ {package_name} available"
    except ImportError as e:
        return False, f"✗ {package_name} missing: {e}"


def validate_dependencies():
    """Validate all required dependencies."""
    print("=== Dependency Validation ===")

    dependencies = [
        ("ldap3", "ldap3"),
        ("PyYAML", "yaml"),
        ("cryptography", "cryptography"),
        ("pytest", "pytest"),
        ("pytest-mock", "pytest_mock"),
    ]

    all_ok = True
    for pkg_name, import_name in dependencies:
        ok, message = check_dependency(pkg_name, import_name)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_core_modules():
    """Validate core application modules."""
    print("\n=== Core Module Validation ===")

    modules = [
        "ad_provision.config",
        "ad_provision.sources",
        "ad_provision.main",
        "ad_provision.directory_client",
        "ad_provision.powershell",
        "ad_provision.report",
        "ad_provision.notifications",
        "ad_provision.logging_setup",
        "ad_provision.provisioners.base",
        "ad_provision.provisioners.organizational_units",
        "ad_provision.provisioners.groups",
        "ad_provision.provisioners.users",
        "ad_provision.provisioners.folders",
        "ad_provision.provisioners.shares",
        "ad_provision.provisioners.permissions",
        "ad_provision.provisioners.gpos",
    ]

    all_ok = True
    for module in modules:
        ok, message = check_dependency(module, module)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_functionality():
    """Validate key functionality."""
    print("\n=== Functionality Validation ===")

    try:
        from ad_provision.config import load_config
        config = load_config(str(EXAMPLE_CONFIG))
        print("  ✓ Configuration loading")

        from ad_provision.sources import load_manifest, load_settings
        settings = load_settings(config['inputs']['settings'])
        manifest = load_manifest(config['inputs']['manifest'])
        print(f"  ✓ Inputs loading ({len(manifest)} categories, {len(settings)} settings)")

        from ad_provision.provisioners.groups import group_type
        assert group_type('Global', 'Security') == -2147483646
        print("  ✓ Group type mapping")

        from ad_provision.main import ProvisioningOrchestrator
        orchestrator = ProvisioningOrchestrator(config_path=str(EXAMPLE_CONFIG), dry_run=True)
        orchestrator.config = config
        orchestrator.config['report']['enabled'] = False
        exit_code = orchestrator.run()
        if exit_code != 0:
            print(f"  ✗ Dry run returned exit code {exit_code}")
            return False
        print(f"  ✓ Dry run of example inputs ({orchestrator.run_stats['rows_processed']} rows)")

        return True

    except Exception as e:
        print(f"  ✗ Functionality test failed: {e}")
        return False


def validate_cli():
    """Validate command-line interface."""
    print("\n=== CLI Validation ===")

    try:
        import subprocess
        import json

        result = subprocess.run([sys.executable, "-m", "ad_provision.main", "--help"],
                                capture_output=True, text=True)
        if result.returncode == 0:
            print("  ✓ Help command working")
        else:
            print("  ✗ Help command failed")
            return False

        # Directory is unreachable here, so the check reports unhealthy but must still emit JSON
        result = subprocess.run([sys.executable, "-m", "ad_provision.main", "--health-check",
                                 "--config", str(EXAMPLE_CONFIG)],
                                capture_output=True, text=True)
        try:
            health_data = json.loads(result.stdout)
        except json.JSONDecodeError:
            print("  ✗ Health check didn't return valid JSON")
            return False

        if 'status' in health_data and 'checks' in health_data:
            print(f"  ✓ Health check command working (status: {health_data['status']})")
        else:
            print("  ✗ Health check returned invalid JSON")
            return False

        return True

    except Exception as e:
        print(f"  ✗ CLI validation failed: {e}")
        return False


def main():
    """Run all validations."""
    print("AD Bulk Provision - Installation Validation")
    print("=" * 50)

    all_validations = [
        validate_dependencies(),
        validate_core_modules(),
        validate_functionality(),
        validate_cli(),
    ]

    print("\n=== Summary ===")
    if all(all_validations):
        print("✓ All validations passed!")
        print("✓ AD Bulk Provision is ready for use")
        print("\nNext steps:")
        print("  1. Copy examples/config.yaml and examples/input/ and describe your environment")
        print("  2. Check inputs with: python -m ad_provision.main -c config.yaml --health-check")
        print("  3. Preview changes with: python -m ad_provision.main -c config.yaml --dry-run")
        print("  4. Provision: python -m ad_provision.main -c config.yaml")
        return 0
    else:
        print("✗ Some validations failed!")
        print("Please resolve the issues above before using the application.")
        return 1


if __name__ == "__main__":
    sys.exit(main())
