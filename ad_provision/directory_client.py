"""
Directory client for provisioning objects in Active Directory over LDAP.

This module provides functionality to connect to domain controllers and create
organizational units, groups and users, set passwords and manage group membership.
"""

import os
import ssl
import time
import logging
import tempfile
from typing import Dict, List, Any, Optional
from ldap3 import Server, Connection, ALL, BASE, SUBTREE, MODIFY_ADD, MODIFY_REPLACE, Tls
from ldap3.core.exceptions import LDAPException, LDAPSocketOpenError, LDAPBindError
from ldap3.utils.conv import escape_filter_chars

logger = logging.getLogger(__name__)

# LDAP result codes
RESULT_ATTRIBUTE_OR_VALUE_EXISTS = 20
RESULT_ENTRY_ALREADY_EXISTS = 68

# userAccountControl flags
UAC_NORMAL_ACCOUNT = 0x0200
UAC_ACCOUNTDISABLE = 0x0002


class DirectoryConnectionError(Exception):
    """Raised when the directory connection fails."""
    pass


class DirectoryOperationError(Exception):
    """Raised when a directory read or write fails."""
    pass


class DirectoryClient:
    """
    LDAP client that writes provisioning changes to Active Directory.

    In dry-run mode no connection is needed: every write is logged and
    reported as ``planned``.
    """

    def __init__(self, config: Dict[str, Any], dry_run: bool = False):
        """
        Initialize directory client with configuration.

        Args:
            config: Directory configuration dictionary
            dry_run: Log writes instead of performing them
        """
        self.config = config
        self.dry_run = dry_run
        self.server_url = config['server_url']
        self.bind_dn = config['bind_dn']
        self.bind_password = config['bind_password']

        # SSL/TLS configuration
        self.use_ssl = config.get('use_ssl', self.server_url.lower().startswith('ldaps://'))
        self.start_tls = config.get('start_tls', False)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')
        self.cert_file = config.get('cert_file')
        self.key_file = config.get('key_file')
        self.keystore_file = config.get('keystore_file')
        self.keystore_type = str(config.get('keystore_type', 'PEM')).upper()
        self.keystore_password = config.get('keystore_password')

        # Connection settings
        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 10)

        # Retry settings from error_handling config
        error_config = config.get('error_handling', {})
        self.max_retries = error_config.get('max_retries', 3)
        self.retry_wait = error_config.get('retry_wait_seconds', 5)

        self.server = None
        self.connection = None
        self._connected = False
        self._temp_files: List[str] = []

    def connect(self, max_retries: Optional[int] = None, retry_wait: Optional[int] = None) -> bool:
        """
        Establish connection to the domain controller with retry logic.

        Args:
            max_retries: Maximum number of connection attempts (uses config default if None)
            retry_wait: Seconds to wait between retries (uses config default if None)

        Returns:
            True if connection successful

        Raises:
            DirectoryConnectionError: If connection fails after all retries
        """
        max_retries = max_retries or self.max_retries
        retry_wait = retry_wait if retry_wait is not None else self.retry_wait

        try:
            tls_config = self._create_tls_config()
            self.server = Server(
                self.server_url,
                use_ssl=self.use_ssl,
                tls=tls_config,
                get_info=ALL,
                connect_timeout=self.connection_timeout
            )
            logger.debug(f"Created LDAP server object for {self.server_url} (SSL: {self.use_ssl}, StartTLS: {self.start_tls})")
        except DirectoryConnectionError:
            raise
        except Exception as e:
            raise DirectoryConnectionError(f"Failed to create LDAP server: {e}")

        last_exception = None
        for attempt in range(max_retries):
            try:
                self.connection = Connection(
                    self.server,
                    user=self.bind_dn,
                    password=self.bind_password,
                    auto_bind=False,
                    receive_timeout=self.receive_timeout
                )

                if not self.connection.open():
                    raise DirectoryConnectionError(f"Failed to open connection: {self.connection.result}")

                if self.start_tls and not self.use_ssl:
                    if not self.connection.start_tls():
                        raise DirectoryConnectionError(f"Failed to start TLS: {self.connection.result}")
                    logger.debug("StartTLS negotiation successful")

                if not self.connection.bind():
                    raise LDAPBindError(f"Bind failed: {self.connection.result}")

                self._connected = True
                logger.info(f"Successfully connected and bound to {self.server_url}")
                return True

            except (LDAPSocketOpenError, LDAPBindError, LDAPException, DirectoryConnectionError) as e:
                last_exception = e
                logger.warning(f"Directory connection attempt {attempt + 1}/{max_retries} failed: {e}")
                self._drop_connection()
                if attempt < max_retries - 1:
                    time.sleep(retry_wait)
            except Exception as e:
                last_exception = e
                logger.error(f"Unexpected error during directory connection: {e}")
                self._drop_connection()
                break

        error_msg = f"Failed to connect to {self.server_url} after {max_retries} attempts"
        if last_exception:
            error_msg += f": {last_exception}"
        raise DirectoryConnectionError(error_msg)

    def _drop_connection(self):
        """Unbind a half-open connection after a failed attempt."""
        if self.connection:
            try:
                self.connection.unbind()
            except Exception as e:
                logger.debug(f"Ignoring unbind failure on abandoned connection: {e}")
            self.connection = None

    def _create_tls_config(self) -> Optional[Tls]:
        """
        Create TLS configuration for the LDAP connection.

        Returns:
            Tls configuration object or None if not needed
        """
        if not (self.use_ssl or self.start_tls):
            return None

        tls_config = {}

        if not self.verify_ssl:
            tls_config['validate'] = ssl.CERT_NONE
            logger.warning("SSL certificate verification disabled")
        else:
            tls_config['validate'] = ssl.CERT_REQUIRED

        if self.ca_cert_file:
            tls_config['ca_certs_file'] = self.ca_cert_file
            logger.debug(f"Using CA certificate file: {self.ca_cert_file}")

        # Client certificate for mutual TLS
        cert_file, key_file = self.cert_file, self.key_file
        if self.keystore_file and self.keystore_type == 'PKCS12':
            cert_file, key_file = self._extract_pkcs12(self.keystore_file)

        if cert_file and key_file:
            tls_config['local_certificate_file'] = cert_file
            tls_config['local_private_key_file'] = key_file
            logger.debug("Client certificate configured for mutual TLS")

        try:
            return Tls(**tls_config)
        except Exception as e:
            raise DirectoryConnectionError(f"Failed to create TLS configuration: {e}")

    def _extract_pkcs12(self, keystore_file: str) -> tuple:
        """
        Extract certificate and key from a PKCS12 keystore into temporary PEM files.

        Returns:
            Tuple of (certificate path, private key path)
        """
        from cryptography.hazmat.primitives import serialization
        from cryptography.hazmat.primitives.serialization import pkcs12

        try:
            with open(keystore_file, 'rb') as f:
                p12_data = f.read()

            password = self.keystore_password.encode() if self.keystore_password else None
            private_key, certificate, _ = pkcs12.load_key_and_certificates(p12_data, password)
        except (OSError, ValueError) as e:
            raise DirectoryConnectionError(f"Failed to load PKCS12 keystore {keystore_file}: {e}")

        if not (private_key and certificate):
            raise DirectoryConnectionError(f"PKCS12 keystore {keystore_file} has no certificate and key pair")

        with tempfile.NamedTemporaryFile(mode='wb', delete=False, suffix='.pem') as cert_out:
            cert_out.write(certificate.public_bytes(serialization.Encoding.PEM))
            cert_path = cert_out.name

        with tempfile.NamedTemporaryFile(mode='wb', delete=False, suffix='.pem') as key_out:
            key_out.write(private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption()
            ))
            key_path = key_out.name

        self._temp_files.extend([cert_path, key_path])
        logger.info(f"Loaded PKCS12 client certificate: {keystore_file}")
        return cert_path, key_path

    def disconnect(self):
        """Close the directory connection and remove temporary key material."""
        if self.connection and self._connected:
            try:
                self.connection.unbind()
                logger.debug("Directory connection closed")
            except Exception as e:
                logger.warning(f"Error closing directory connection: {e}")
            finally:
                self._connected = False
                self.connection = None

        for path in self._temp_files:
            try:
                os.remove(path)
            except OSError as e:
                logger.warning(f"Could not remove temporary file {path}: {e}")
        self._temp_files = []

    @property
    def connected(self) -> bool:
        return self._connected

    def _require_connection(self):
        if not self._connected:
            raise DirectoryOperationError("Not connected to directory server")

    def _result_code(self) -> int:
        return self.connection.result.get('result', -1)

    def _result_text(self) -> str:
        result = self.connection.result
        description = result.get('description', 'unknown error')
        message = result.get('message')
        return f"{description}: {message}" if message else description

    def add_entry(self, dn: str, object_class: List[str], attributes: Dict[str, Any]) -> str:
        """
        Create a directory entry.

        Args:
            dn: Distinguished name of the new entry
            object_class: Object classes of the new entry
            attributes: Initial attribute values

        Returns:
            'created', 'exists' if an entry with this DN already exists,
            or 'planned' in dry-run mode

        Raises:
            DirectoryOperationError: If the server rejects the entry
        """
        if self.dry_run:
            logger.info(f"[DRY-RUN] Would create {object_class[-1]} {dn}")
            return 'planned'

        self._require_connection()
        try:
            success = self.connection.add(dn, object_class, attributes)
        except LDAPException as e:
            raise DirectoryOperationError(f"Failed to create {dn}: {e}")

        if success:
            logger.info(f"Created {object_class[-1]} {dn}")
            return 'created'

        if self._result_code() == RESULT_ENTRY_ALREADY_EXISTS:
            logger.info(f"Entry already exists: {dn}")
            return 'exists'

        raise DirectoryOperationError(f"Failed to create {dn}: {self._result_text()}")

    def find_group_dn(self, name: str, search_base: str) -> str:
        """
        Look up a group by sAMAccountName.

        Args:
            name: Group sAMAccountName
            search_base: Subtree to search, normally the domain DN

        Returns:
            Distinguished name of the group

        Raises:
            DirectoryOperationError: If the group is not found
        """
        if self.dry_run:
            return f"CN={name}"

        self._require_connection()
        search_filter = f"(&(objectClass=group)(sAMAccountName={escape_filter_chars(name)}))"
        try:
            success = self.connection.search(
                search_base=search_base,
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=['distinguishedName']
            )
        except LDAPException as e:
            raise DirectoryOperationError(f"Group lookup failed for {name}: {e}")

        if not success or not self.connection.entries:
            raise DirectoryOperationError(f"Group not found: {name}")

        return str(self.connection.entries[0].entry_dn)

    def add_group_member(self, group_dn: str, member_dn: str) -> str:
        """
        Add a member to a group.

        Returns:
            'added', 'exists' if already a member, or 'planned' in dry-run mode

        Raises:
            DirectoryOperationError: If the server rejects the change
        """
        if self.dry_run:
            logger.info(f"[DRY-RUN] Would add {member_dn} to group {group_dn}")
            return 'planned'

        self._require_connection()
        try:
            success = self.connection.modify(group_dn, {'member': [(MODIFY_ADD, [member_dn])]})
        except LDAPException as e:
            raise DirectoryOperationError(f"Failed to add {member_dn} to {group_dn}: {e}")

        if success:
            logger.info(f"Added {member_dn} to group {group_dn}")
            return 'added'

        if self._result_code() in (RESULT_ATTRIBUTE_OR_VALUE_EXISTS, RESULT_ENTRY_ALREADY_EXISTS):
            logger.debug(f"{member_dn} is already a member of {group_dn}")
            return 'exists'

        raise DirectoryOperationError(f"Failed to add {member_dn} to {group_dn}: {self._result_text()}")

    def set_password(self, dn: str, password: str) -> bool:
        """
        Set an account password using the Active Directory password modify extension.

        Raises:
            DirectoryOperationError: If the password is rejected
        """
        if self.dry_run:
            logger.info(f"[DRY-RUN] Would set password for {dn}")
            return True

        self._require_connection()
        try:
            success = self.connection.extend.microsoft.modify_password(dn, password)
        except LDAPException as e:
            raise DirectoryOperationError(f"Failed to set password for {dn}: {e}")

        if not success:
            raise DirectoryOperationError(f"Failed to set password for {dn}: {self._result_text()}")

        logger.debug(f"Password set for {dn}")
        return True

    def enable_account(self, dn: str, must_change_password: bool = False) -> bool:
        """
        Enable an account, optionally forcing a password change at next logon.

        Raises:
            DirectoryOperationError: If the change is rejected
        """
        if self.dry_run:
            logger.info(f"[DRY-RUN] Would enable account {dn}")
            return True

        self._require_connection()
        changes = {'userAccountControl': [(MODIFY_REPLACE, [UAC_NORMAL_ACCOUNT])]}
        if must_change_password:
            changes['pwdLastSet'] = [(MODIFY_REPLACE, [0])]

        try:
            success = self.connection.modify(dn, changes)
        except LDAPException as e:
            raise DirectoryOperationError(f"Failed to enable account {dn}: {e}")

        if not success:
            raise DirectoryOperationError(f"Failed to enable account {dn}: {self._result_text()}")

        logger.debug(f"Enabled account {dn}")
        return True

    def require_password_change(self, dn: str) -> bool:
        """
        Force a password change at next logon without touching account state.

        Raises:
            DirectoryOperationError: If the change is rejected
        """
        if self.dry_run:
            logger.info(f"[DRY-RUN] Would require password change for {dn}")
            return True

        self._require_connection()
        try:
            success = self.connection.modify(dn, {'pwdLastSet': [(MODIFY_REPLACE, [0])]})
        except LDAPException as e:
            raise DirectoryOperationError(f"Failed to require password change for {dn}: {e}")

        if not success:
            raise DirectoryOperationError(f"Failed to require password change for {dn}: {self._result_text()}")

        logger.debug(f"Password change required at next logon for {dn}")
        return True

    def test_connection(self) -> bool:
        """
        Test the directory connection without throwing exceptions.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            if not self._connected:
                self.connect()

            return bool(self.connection.search(
                search_base='',
                search_filter='(objectClass=*)',
                search_scope=BASE,
                attributes=['namingContexts'],
                size_limit=1
            ))
        except Exception as e:
            logger.debug(f"Connection test failed: {e}")
            return False

    def get_connection_stats(self) -> Dict[str, Any]:
        """
        Get connection statistics and status.

        Returns:
            Dictionary with connection information
        """
        stats = {
            'connected': self._connected,
            'dry_run': self.dry_run,
            'server_url': self.server_url,
            'use_ssl': self.use_ssl,
            'start_tls': self.start_tls,
            'verify_ssl': self.verify_ssl,
            'bind_dn': self.bind_dn
        }

        if self.connection:
            stats.update({
                'server_host': getattr(self.connection.server, 'host', None),
                'server_port': getattr(self.connection.server, 'port', None),
                'bound': getattr(self.connection, 'bound', False),
                'tls_started': getattr(self.connection, 'tls_started', False)
            })

        return stats

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()
