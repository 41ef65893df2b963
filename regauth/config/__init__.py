"""Configuration for the credential client.

Key Components:
    - ClientSettings: Store location, timeouts and TLS settings, loaded
      from ``REGAUTH_*`` environment variables or a YAML file

Example:
    >>> from regauth.config import ClientSettings
    >>> settings = ClientSettings.from_yaml("regauth.yaml")
    >>> settings.default_store_path
    PosixPath('/home/alice/.docker/config.json')
"""

from regauth.config.settings import ClientSettings

__all__ = ["ClientSettings"]
