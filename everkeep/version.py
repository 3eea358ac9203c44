"""Everkeep Vault Meta information.
   Everkeep Vault keeps user-authored vault content encrypted at rest.
"""
__title__ = 'everkeep'
__description__ = (
   'Everkeep Vault keeps user-authored vault content '
   'encrypted at rest with per-record derived keys.'
)
__version__ = '0.3.0'
__license__ = 'Apache-2.0'
