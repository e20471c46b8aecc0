"""Credential resolution for the Cloud Natural Language client."""

from collections.abc import Callable, Mapping, Sequence
import json
import logging
import os
from pathlib import Path
import threading
from typing import Any

import google.auth
from google.auth import crypt, environment_vars
from google.auth import credentials as ga_credentials
from google.auth.exceptions import DefaultCredentialsError, GoogleAuthError
from google.oauth2 import service_account


logger = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"

ProjectIdCallback = Callable[[Exception | None, str | None], Any]


class GoogleAuth:
    """Authentication context shared by every call of a client.

    Credentials are resolved on first use and cached. Resolution order:
    explicit credentials, key file, then application default credentials.
    """

    def __init__(
        self,
        credentials: ga_credentials.Credentials | Mapping[str, Any] | None = None,
        key_filename: str | os.PathLike | None = None,
        email: str | None = None,
        project_id: str | None = None,
        scopes: Sequence[str] | None = None,
    ) -> None:
        """Initialize the authentication context.

        Args:
            credentials: Credentials object, or service account key material
                (``client_email``, ``private_key``, ...)
            key_filename: Path to a .json, .pem or .p12 key file
            email: Service account email, required for .pem and .p12 keys
            project_id: Explicit project id
            scopes: OAuth scopes requested for the credentials

        Raises:
            ValueError: The key file type is unsupported or misses its email
        """
        self.scopes = list(scopes or [])
        self.project_id = project_id
        self._explicit = credentials
        self._key_filename = Path(key_filename) if key_filename else None
        self._email = email
        self._credentials: ga_credentials.Credentials | None = None
        self._default_project_id: str | None = None
        self._lock = threading.Lock()

        if self._key_filename is not None:
            suffix = self._key_filename.suffix.lower()
            if suffix == ".p12":
                msg = f"{self._key_filename}: .p12 keys are not supported, convert the key to .pem or .json"
                raise ValueError(msg)
            if suffix == ".pem" and not email:
                msg = f"{self._key_filename}: an email is required when using a .pem key"
                raise ValueError(msg)

    def get_credentials(self) -> ga_credentials.Credentials:
        """Return the resolved credentials, resolving them on first call."""
        with self._lock:
            if self._credentials is None:
                self._credentials = self._resolve_credentials()
            return self._credentials

    def _resolve_credentials(self) -> ga_credentials.Credentials:
        if isinstance(self._explicit, ga_credentials.Credentials):
            logger.debug("Using explicitly supplied credentials")
            return ga_credentials.with_scopes_if_required(self._explicit, self.scopes)

        if isinstance(self._explicit, Mapping):
            logger.debug("Using explicitly supplied service account key material")
            info = dict(self._explicit)
            info.setdefault("token_uri", TOKEN_URI)
            return service_account.Credentials.from_service_account_info(info, scopes=self.scopes)

        if self._key_filename is not None:
            return self._credentials_from_file(self._key_filename)

        credentials, project_id = google.auth.default(scopes=self.scopes)
        self._default_project_id = project_id
        logger.debug("Using application default credentials")
        return credentials

    def _credentials_from_file(self, path: Path) -> ga_credentials.Credentials:
        logger.debug(f"Loading credentials from {path}")
        if path.suffix.lower() == ".pem":
            signer = crypt.RSASigner.from_string(path.read_text(encoding="utf-8"))
            return service_account.Credentials(
                signer,
                service_account_email=self._email,
                token_uri=TOKEN_URI,
                scopes=self.scopes,
            )
        return service_account.Credentials.from_service_account_file(str(path), scopes=self.scopes)

    def _resolve_project_id(self) -> str:
        if self.project_id:
            return self.project_id

        for name in (environment_vars.PROJECT, environment_vars.LEGACY_PROJECT):
            value = os.environ.get(name)
            if value:
                return value

        if isinstance(self._explicit, Mapping) and self._explicit.get("project_id"):
            return self._explicit["project_id"]

        if self._key_filename is not None and self._key_filename.suffix.lower() == ".json":
            with self._key_filename.open(encoding="utf-8") as handle:
                project_id = json.load(handle).get("project_id")
            if project_id:
                return project_id

        credentials = self.get_credentials()
        project_id = getattr(credentials, "project_id", None) or getattr(credentials, "quota_project_id", None)
        if project_id:
            return project_id
        if self._default_project_id:
            return self._default_project_id

        _, project_id = google.auth.default(scopes=self.scopes)
        if project_id:
            return project_id

        msg = "Unable to detect a project id in the current environment"
        raise DefaultCredentialsError(msg)

    def get_project_id(self, callback: ProjectIdCallback | None = None) -> str | None:
        """Return the project id this client bills against.

        Args:
            callback: Optional ``callback(error, project_id)``; when given, errors
                are delivered to it instead of being raised and ``None`` is returned

        Returns:
            The project id, or ``None`` when a callback was supplied

        Raises:
            DefaultCredentialsError: No project id could be found
        """
        if callback is None:
            return self._resolve_project_id()

        try:
            project_id = self._resolve_project_id()
        except (GoogleAuthError, OSError, ValueError) as e:
            callback(e, None)
        else:
            callback(None, project_id)
        return None
