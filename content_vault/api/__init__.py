"""
Vault service API and its request/result models.
"""

from .service import VaultService

__all__ = ['VaultService']
