"""
Folder provisioning.

CSV columns: Path (required). Relative paths are created under ShareRoot.
"""

import os
import logging
from typing import Dict

from .base import ProvisionerBase, ProvisioningError

logger = logging.getLogger(__name__)


class FolderProvisioner(ProvisionerBase):
    """Creates one folder per row."""

    category = 'folders'
    required_columns = ['Path']

    def describe(self, row: Dict[str, str]) -> str:
        return row.get('Path') or '<unnamed>'

    def provision(self, row: Dict[str, str]) -> str:
        path = self.resolve_share_path(row.get('Path', ''))

        if os.path.isdir(path):
            logger.info(f"Folder already exists: {path}")
            return 'exists'
        if os.path.exists(path):
            raise ProvisioningError(f"Path exists and is not a folder: {path}")

        if self.context.dry_run:
            logger.info(f"[DRY-RUN] Would create folder {path}")
            return 'planned'

        try:
            os.makedirs(path)
        except OSError as e:
            raise ProvisioningError(f"Failed to create folder {path}: {e}")

        logger.info(f"Created folder {path}")
        return 'created'
