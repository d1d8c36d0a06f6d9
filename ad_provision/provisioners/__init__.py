"""
Category provisioners for AD Bulk Provision.

Each module contains one ProvisionerBase subclass handling one manifest category.
"""

PROVISIONER_MODULES = {
    'ous': 'organizational_units',
    'groups': 'groups',
    'users': 'users',
    'folders': 'folders',
    'shares': 'shares',
    'permissions': 'permissions',
    'gpos': 'gpos',
}
