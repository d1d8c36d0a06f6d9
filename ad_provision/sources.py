"""
Input file handling for AD Bulk Provision.

Three kinds of input files drive a run:

* the manifest CSV (columns ``Category,File``) indexing one CSV per category,
* a small ``Key=Value`` settings file describing the target environment,
* the per-category CSV files, one provisioning call per data row.
"""

import os
import csv
import logging
from typing import Dict, List, Optional, Iterable

logger = logging.getLogger(__name__)

# Dependency order: parents before children
CATEGORY_ORDER = ['ous', 'groups', 'users', 'folders', 'shares', 'permissions', 'gpos']

DIRECTORY_CATEGORIES = ('ous', 'groups', 'users')

MANIFEST_COLUMNS = ['Category', 'File']

DEFAULT_PASSWORD_ENV = 'AD_PROVISION_DEFAULT_PASSWORD'


class SourceError(Exception):
    """Raised when an input file is missing or malformed."""
    pass


class CSVRow(dict):
    """A CSV data row that remembers its line number in the source file."""

    def __init__(self, values: Dict[str, str], line_number: int):
        super().__init__(values)
        self.line_number = line_number


class Settings:
    """
    Case-insensitive view over the ``Key=Value`` settings file.

    Keys keep their original spelling for display; lookups ignore case.
    """

    def __init__(self, values: Optional[Dict[str, str]] = None, path: Optional[str] = None):
        self.path = path
        self._values = {}
        self._names = {}
        for key, value in (values or {}).items():
            self._values[key.lower()] = value
            self._names[key.lower()] = key

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self._values.get(key.lower())
        return value if value not in (None, '') else default

    def require(self, key: str) -> str:
        """Return a setting or raise SourceError naming the missing key."""
        value = self.get(key)
        if value is None:
            location = self.path or 'settings'
            raise SourceError(f"Required setting '{key}' is missing from {location}")
        return value

    def __contains__(self, key: str) -> bool:
        return key.lower() in self._values

    def __len__(self) -> int:
        return len(self._values)

    def as_dict(self) -> Dict[str, str]:
        return {self._names[key]: value for key, value in self._values.items()}

    @property
    def domain_dn(self) -> Optional[str]:
        return self.get('DomainDN')

    @property
    def netbios_name(self) -> Optional[str]:
        return self.get('NetBIOSName')

    @property
    def share_root(self) -> str:
        return self.get('ShareRoot', '.')

    @property
    def upn_suffix(self) -> Optional[str]:
        suffix = self.get('UPNSuffix')
        if suffix:
            return suffix
        if self.domain_dn:
            return dn_to_dns_name(self.domain_dn)
        return None

    @property
    def default_password(self) -> Optional[str]:
        return os.getenv(DEFAULT_PASSWORD_ENV) or self.get('DefaultPassword')


def dn_to_dns_name(domain_dn: str) -> str:
    """Convert ``DC=corp,DC=example,DC=com`` to ``corp.example.com``."""
    labels = []
    for part in domain_dn.split(','):
        part = part.strip()
        if part.upper().startswith('DC='):
            labels.append(part[3:])
    return '.'.join(labels)


def parse_settings(lines: Iterable[str], path: Optional[str] = None) -> Settings:
    """
    Parse ``Key=Value`` lines.

    Blank lines and lines starting with ``#`` or ``;`` are ignored. The value
    is everything after the first ``=`` so values may themselves contain ``=``.

    Raises:
        SourceError: If a line has no ``=`` or an empty key
    """
    values = {}
    for line_number, raw_line in enumerate(lines, 1):
        line = raw_line.strip()
        if not line or line.startswith('#') or line.startswith(';'):
            continue

        if '=' not in line:
            raise SourceError(f"{path or 'settings'} line {line_number}: expected Key=Value, got '{line}'")

        key, value = line.split('=', 1)
        key = key.strip()
        if not key:
            raise SourceError(f"{path or 'settings'} line {line_number}: empty key")

        values[key] = value.strip()

    return Settings(values, path)


def load_settings(path: Optional[str], encoding: str = 'utf-8-sig') -> Settings:
    """
    Load the settings file.

    Args:
        path: Path to the settings file, or None for empty settings
        encoding: File encoding

    Returns:
        Settings instance
    """
    if not path:
        logger.debug("No settings file configured")
        return Settings()

    try:
        with open(path, 'r', encoding=encoding) as f:
            settings = parse_settings(f, path)
    except FileNotFoundError:
        raise SourceError(f"Settings file not found: {path}")
    except (OSError, UnicodeDecodeError) as e:
        raise SourceError(f"Could not read settings file {path}: {e}")

    logger.info(f"Loaded {len(settings)} settings from {path}")
    return settings


def load_manifest(path: str, encoding: str = 'utf-8-sig') -> Dict[str, str]:
    """
    Load the manifest CSV.

    Args:
        path: Path to the manifest CSV
        encoding: File encoding

    Returns:
        Mapping of category name to absolute CSV path

    Raises:
        SourceError: On unknown or duplicate categories, or missing files
    """
    rows = read_rows(path, MANIFEST_COLUMNS, encoding)
    base_dir = os.path.dirname(os.path.abspath(path))

    manifest = {}
    for row in rows:
        category = row['Category'].lower()
        if category not in CATEGORY_ORDER:
            raise SourceError(f"{path} line {row.line_number}: unknown category '{row['Category']}'")
        if category in manifest:
            raise SourceError(f"{path} line {row.line_number}: duplicate category '{row['Category']}'")
        if not row['File']:
            raise SourceError(f"{path} line {row.line_number}: no file given for category '{category}'")

        file_path = row['File']
        if not os.path.isabs(file_path):
            file_path = os.path.normpath(os.path.join(base_dir, file_path))
        if not os.path.isfile(file_path):
            raise SourceError(f"{path} line {row.line_number}: file not found for '{category}': {file_path}")

        manifest[category] = file_path

    logger.info(f"Manifest {path} lists {len(manifest)} categories: {', '.join(ordered_categories(manifest))}")
    return manifest


def ordered_categories(categories: Iterable[str]) -> List[str]:
    """Return the given category names in dependency order."""
    wanted = set(categories)
    return [category for category in CATEGORY_ORDER if category in wanted]


def read_header(path: str, encoding: str = 'utf-8-sig') -> List[str]:
    """Read and return the stripped header row of a CSV file."""
    try:
        with open(path, 'r', encoding=encoding, newline='') as f:
            reader = csv.reader(f)
            header = next(reader, None)
    except FileNotFoundError:
        raise SourceError(f"CSV file not found: {path}")
    except (OSError, csv.Error, UnicodeDecodeError) as e:
        raise SourceError(f"Could not read CSV file {path}: {e}")

    if not header:
        raise SourceError(f"CSV file is empty or has no header: {path}")
    return [column.strip() for column in header]


def validate_columns(path: str, header: List[str], required_columns: Iterable[str]):
    """Raise SourceError if any required column is missing from the header."""
    missing = [column for column in required_columns if column not in header]
    if missing:
        raise SourceError(f"{path}: missing required columns: {', '.join(missing)}")


def read_rows(path: str, required_columns: Iterable[str], encoding: str = 'utf-8-sig') -> List[CSVRow]:
    """
    Read every data row of a CSV file.

    Header names and cell values are stripped; rows whose cells are all empty
    are skipped. Rows are returned in file order.

    Args:
        path: CSV file path
        required_columns: Columns that must be present in the header
        encoding: File encoding

    Returns:
        List of CSVRow objects

    Raises:
        SourceError: If the file cannot be read or required columns are missing
    """
    header = read_header(path, encoding)
    validate_columns(path, header, required_columns)

    rows = []
    try:
        with open(path, 'r', encoding=encoding, newline='') as f:
            reader = csv.reader(f)
            next(reader, None)
            for record in reader:
                line_number = reader.line_num
                if not any(cell.strip() for cell in record):
                    continue
                values = {}
                for index, column in enumerate(header):
                    values[column] = record[index].strip() if index < len(record) else ''
                rows.append(CSVRow(values, line_number))
    except (OSError, csv.Error, UnicodeDecodeError) as e:
        raise SourceError(f"Could not read CSV file {path}: {e}")

    logger.debug(f"Read {len(rows)} rows from {path}")
    return rows
