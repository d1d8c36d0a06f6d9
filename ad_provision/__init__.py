"""
AD Bulk Provision - Create directory objects, folders, shares, ACLs and GPOs from CSV files.

This package provides a sequential, CSV-driven pipeline that provisions
organizational units, groups and users in Active Directory, then folders,
SMB shares, folder permissions and group policy objects on the file server.
"""

__version__ = "1.0.0"
__author__ = "AD Provisioning Team"
