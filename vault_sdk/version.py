"""Lifestream Vault SDK Meta information.
   Client-side security layer and async client for the Lifestream Vault API.
"""
__title__ = 'vault_sdk'
__description__ = (
   'Lifestream Vault SDK: request signing, token refresh and '
   'client-side document encryption.'
)
__version__ = '1.0.0'
__license__ = 'Apache-2.0'
