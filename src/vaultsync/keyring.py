"""
This module is responsible for the storage of access tokens in the system keyring.
Obtaining a token is left to the user, vaultsync only stores it.
"""

from __future__ import annotations

# system imports
from threading import RLock

# external imports
import keyring.backends
import keyring.backends.macOS
import keyring.backends.SecretService
import keyrings.alt.file
import keyring.backends.kwallet
from keyring.backend import KeyringBackend
from keyring.core import load_keyring
from keyring.errors import KeyringLocked, PasswordDeleteError, InitError

# local imports
from .config import VaultSyncConfig
from .constants import APP_NAME
from .errors import KeyringAccessError
from .utils import exc_info_tuple
from .logging import scoped_logger


__all__ = ["CredentialStorage"]


supported_keyring_backends = (
    keyring.backends.macOS.Keyring,
    keyring.backends.SecretService.Keyring,
    keyring.backends.kwallet.DBusKeyring,
    keyring.backends.kwallet.DBusKeyringKWallet4,
    keyrings.alt.file.PlaintextKeyring,
)


class CredentialStorage:
    """Provides a threadsafe interface to store an access token in a system keyring

    Supported keyring backends are, in order of preference:

        * macOS Keychain
        * Any keyring implementing the SecretService Dbus specification
        * KWallet
        * Plain text storage

    .. note:: Once the token has been stored with a keyring backend, that backend will
        be saved in the config file and remembered until deleting the credentials.

    :param config_name: Name of vaultsync config.
    """

    _lock = RLock()

    def __init__(self, config_name: str) -> None:
        self._config_name = config_name
        self._logger = scoped_logger(__name__, config_name)

        self._conf = VaultSyncConfig(config_name)

        # defer keyring access until token requested by user
        self._token: str | None = None
        self._loaded = False
        self._keyring = self._keyring_from_config()

    @property
    def keyring(self) -> KeyringBackend | None:
        """
        The keyring backend currently being used to store auth tokens. Will be None if
        we are not linked.
        """
        return self._keyring

    def set_keyring_backend(self, ring: KeyringBackend | None) -> None:
        """
        Enforce usage of a particular keyring backend. If not called, the best backend
        will be selected depending on the platform. Do not change backends after saving
        credentials.

        :param ring: Keyring backend to use.
        """
        if not ring:
            self._conf.set("auth", "keyring", "automatic")
        else:
            self._conf.set(
                "auth",
                "keyring",
                f"{ring.__class__.__module__}.{ring.__class__.__name__}",
            )

        self._keyring = ring

    def _keyring_from_config(self) -> KeyringBackend | None:
        """Initialise keyring specified in config."""
        keyring_class: str = self._conf.get("auth", "keyring").strip()

        if keyring_class == "automatic":
            return None

        try:
            return load_keyring(keyring_class)
        except Exception as exc:
            title = f"Cannot load keyring {keyring_class}"
            message = "Please link vaultsync again with a new access token."
            raise KeyringAccessError(title, message) from exc

    def _best_keyring_backend(self) -> KeyringBackend:
        """Find and initialise the most secure of the available and supported keyring
        backends.
        """
        available_rings = keyring.backend.get_all_keyring()
        supported_rings = [
            k for k in available_rings if isinstance(k, supported_keyring_backends)
        ]

        if not supported_rings:
            return keyrings.alt.file.PlaintextKeyring()

        return max(supported_rings, key=lambda x: x.priority)

    def _get_accessor(self) -> str:
        return f"config:{self._config_name}"

    @property
    def loaded(self) -> bool:
        """Whether we have already loaded the credentials."""
        return self._loaded

    @property
    def token(self) -> str | None:
        """The saved token (read only). This call will block until the keyring is
        unlocked."""
        with self._lock:
            if not self._loaded:
                self.load_creds()
            return self._token

    def load_creds(self) -> None:
        """
        Loads the access token from the system keyring. This will be called
        automatically when accessing the :attr:`token` property.

        :raises KeyringAccessError: if the system keyring is locked or otherwise cannot
            be accessed.
        """
        if not self.keyring:
            return

        self._logger.debug(f"Using keyring: {self.keyring}")

        try:
            token = self.keyring.get_password(APP_NAME, self._get_accessor())
        except (KeyringLocked, InitError):
            title = "Could not load auth token"
            msg = (
                f"{self.keyring.name} is locked. Please unlock the keyring "
                "and try again."
            )
            new_exc = KeyringAccessError(title, msg)
            self._logger.error(title, exc_info=exc_info_tuple(new_exc))
            raise new_exc
        except Exception as e:
            title = "Could not load auth token"
            new_exc = KeyringAccessError(title, str(e))
            self._logger.error(title, exc_info=exc_info_tuple(new_exc))
            raise new_exc

        if token:
            self._token = token
            self._loaded = True

    def save_creds(self, token: str) -> None:
        """
        Saves the access token to the system keyring. Falls back to plain text storage
        if the user denies access to the keyring.

        :param token: The access token.
        """
        with self._lock:
            if self._keyring:
                ring = self._keyring
            else:
                ring = self._best_keyring_backend()

            accessor = self._get_accessor()

            try:
                ring.set_password(APP_NAME, accessor, token)
            except Exception:
                # switch to plain text keyring if we cannot access preferred backend
                ring = keyrings.alt.file.PlaintextKeyring()
                ring.set_password(APP_NAME, accessor, token)

            self.set_keyring_backend(ring)

            self._token = token
            self._loaded = True

            if isinstance(ring, keyrings.alt.file.PlaintextKeyring):
                self._logger.warning(
                    "No keyring found, credentials stored in plain text"
                )

            self._logger.info("Credentials written")

    def delete_creds(self) -> None:
        """
        Deletes the access token from the system keyring.

        :raises KeyringAccessError: if the system keyring is locked or otherwise cannot
            be accessed.
        """
        with self._lock:
            if self.keyring:
                try:
                    self.keyring.delete_password(APP_NAME, self._get_accessor())
                except (KeyringLocked, InitError):
                    title = "Could not delete auth token"
                    msg = (
                        f"{self.keyring.name} is locked. Please unlock the keyring "
                        "and try again."
                    )
                    exc = KeyringAccessError(title, msg)
                    self._logger.error(title, exc_info=exc_info_tuple(exc))
                    raise exc
                except PasswordDeleteError as exc:
                    # password does not exist in keyring
                    self._logger.info(exc.args[0])
                except Exception as e:
                    title = "Could not delete auth token"
                    new_exc = KeyringAccessError(title, str(e))
                    self._logger.error(title, exc_info=exc_info_tuple(new_exc))
                    raise new_exc
                else:
                    self._logger.info("Credentials removed")

            self.set_keyring_backend(None)

            self._token = None
            self._loaded = False

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(config={self._config_name!r})>"
