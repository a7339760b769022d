"""
Per-organization authentication settings.
Tokens live in the OS keyring when one is available and in credentials.yml
otherwise.
"""

import logging
from typing import List, Optional

import keyring
import keyring.backends.fail
from keyring.errors import KeyringError, PasswordDeleteError

from ..cli.errors import AuthError, AzdoError, NoDefaultOrganizationError
from .config import Config
from .config_loader import (
    DEFAULT_ORGANIZATION,
    GIT_PROTOCOL,
    ORGANIZATIONS,
    PAT,
    URL,
    KeyNotFoundError,
)

logger = logging.getLogger(__name__)


class TokenNotFoundError(AuthError):
    def __init__(self, organization: str):
        super().__init__(f'no authentication token found for organization "{organization}"')
        self.organization = organization


def keyring_service(organization: str) -> str:
    return f"azdo:{organization}"


def keyring_available() -> bool:
    """True when keyring resolved to a usable backend."""
    try:
        backend = keyring.get_keyring()
    except KeyringError:
        return False
    return not isinstance(backend, keyring.backends.fail.Keyring)


class AuthConfig:
    """Authentication view over a ConfigLoader."""

    def __init__(self, cfg):
        self.cfg = cfg

    def get_organizations(self) -> List[str]:
        try:
            return sorted(self.cfg.keys([ORGANIZATIONS]))
        except KeyNotFoundError:
            return []

    def find_organization(self, organization: str) -> Optional[str]:
        """Return the configured spelling of an organization name, if known."""
        wanted = organization.strip().lower()
        for name in self.get_organizations():
            if name.lower() == wanted:
                return name
        return None

    def is_known(self, organization: str) -> bool:
        if self.find_organization(organization):
            return True
        env_org = Config.organization()
        return bool(Config.token()) and env_org.lower() == organization.strip().lower()

    def get_url(self, organization: str) -> str:
        name = self.find_organization(organization) or organization
        try:
            url = self.cfg.get([ORGANIZATIONS, name, URL])
            if url:
                return url
        except KeyNotFoundError:
            if not self.is_known(organization):
                raise
        return f"https://{Config.DEFAULT_HOSTNAME}/{organization}"

    def get_git_protocol(self, organization: str) -> str:
        name = self.find_organization(organization) or organization
        return self.cfg.get_or_default([ORGANIZATIONS, name, GIT_PROTOCOL]) or "https"

    def get_token(self, organization: str) -> str:
        """
        Resolve the token for an organization.

        Order: AZDO_TOKEN, credentials.yml, a legacy pat key in config.yml,
        then the OS keyring.
        """
        env_token = Config.token()
        if env_token:
            return env_token

        name = self.find_organization(organization) or organization
        token = self.cfg.get_credential(name)
        if token:
            return token
        try:
            token = self.cfg.get([ORGANIZATIONS, name, PAT])
            if token:
                return token
        except KeyNotFoundError:
            pass
        try:
            token = keyring.get_password(keyring_service(name), name)
        except KeyringError as e:
            logger.debug("Keyring lookup for %s failed: %s", name, e)
            token = None
        if token:
            return token
        raise TokenNotFoundError(organization)

    def has_token(self, organization: str) -> bool:
        try:
            return bool(self.get_token(organization))
        except AuthError:
            return False

    def get_default_organization(self) -> str:
        """
        Resolve the default organization.

        AZDO_ORGANIZATION wins but only when a credential exists for exactly
        that name. Then the configured default, then the only configured
        organization.
        """
        env_org = Config.organization()
        if env_org:
            if not self.has_token(env_org):
                raise NoDefaultOrganizationError(
                    f'organization "{env_org}" from AZDO_ORGANIZATION has no stored credential; '
                    'run "azdo auth login" or set AZDO_TOKEN')
            return self.find_organization(env_org) or env_org
        try:
            value = self.cfg.get([DEFAULT_ORGANIZATION])
            if value:
                return value
        except KeyNotFoundError:
            pass
        organizations = self.get_organizations()
        if len(organizations) == 1:
            return organizations[0]
        raise NoDefaultOrganizationError("no default organization defined")

    def set_default_organization(self, organization: str):
        if not organization:
            try:
                self.cfg.remove([DEFAULT_ORGANIZATION])
            except KeyNotFoundError:
                pass
            return
        name = self.find_organization(organization)
        if name is None:
            raise AzdoError(f'organization "{organization}" is not configured; run "azdo auth login"')
        self.cfg.set([DEFAULT_ORGANIZATION], name)

    def check_auth(self) -> bool:
        return bool(Config.token()) or len(self.get_organizations()) > 0

    def login(self, organization: str, url: str, token: str, git_protocol: str = "",
              secure_storage: bool = True) -> bool:
        """
        Store credentials for an organization.

        Returns:
            True when the token had to be written in plain text
        """
        from ..classes.repository import organization_from_url

        if not organization:
            organization = organization_from_url(url)
        organization = organization.lower()
        if not url:
            url = f"https://{Config.DEFAULT_HOSTNAME}/{organization}"

        stored_securely = False
        if secure_storage and keyring_available():
            try:
                keyring.set_password(keyring_service(organization), organization, token)
                stored_securely = True
            except KeyringError as e:
                logger.warning("Failed to store token in keyring, falling back to plain text: %s", e)

        if stored_securely:
            self.cfg.remove_credential(organization)
        else:
            self.cfg.set_credential(organization, token)

        self.cfg.set([ORGANIZATIONS, organization, URL], url)
        if git_protocol:
            self.cfg.set([ORGANIZATIONS, organization, GIT_PROTOCOL], git_protocol)
        try:
            self.cfg.get([DEFAULT_ORGANIZATION])
        except KeyNotFoundError:
            self.cfg.set([DEFAULT_ORGANIZATION], organization)
        self.cfg.write()
        logger.debug("Logged in to %s (secure storage: %s)", organization, stored_securely)
        return not stored_securely

    def logout(self, organization: str):
        name = self.find_organization(organization) or organization
        try:
            keyring.delete_password(keyring_service(name), name)
        except PasswordDeleteError:
            pass
        except KeyringError as e:
            logger.debug("Keyring delete for %s failed: %s", name, e)
        try:
            self.cfg.remove([ORGANIZATIONS, name])
        except KeyNotFoundError:
            pass
        self.cfg.remove_credential(name)
        try:
            if self.cfg.get([DEFAULT_ORGANIZATION]) == name:
                self.cfg.remove([DEFAULT_ORGANIZATION])
        except KeyNotFoundError:
            pass
        self.cfg.write()
