import os
import sys
import logging
import pathlib
from typing import Mapping, Optional

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from .errors import (
    ArtifactNotFoundError,
    ArtifactParseError,
    ArtifactReadError,
    PathLike,
    PersistError,
    WrongKeyTypeError,
)

logger = logging.getLogger(__name__)

APP_NAME = "burp-awesome-tls"
DIR_MODE = 0o700
FILE_MODE = 0o600


def user_config_dir(environ: Optional[Mapping[str, str]] = None,
                    platform: Optional[str] = None) -> Optional[pathlib.Path]:
    """Return the per-user configuration directory, or None if it can't be determined.

    Windows uses %APPDATA%, macOS ~/Library/Application Support, everything
    else $XDG_CONFIG_HOME (when absolute) or ~/.config.
    """
    env = os.environ if environ is None else environ
    platform = platform or sys.platform

    if platform.startswith("win"):
        appdata = env.get("APPDATA")
        return pathlib.Path(appdata) if appdata else None

    home = env.get("HOME")
    if platform == "darwin":
        return pathlib.Path(home) / "Library" / "Application Support" if home else None

    xdg = env.get("XDG_CONFIG_HOME")
    if xdg and os.path.isabs(xdg):
        return pathlib.Path(xdg)
    return pathlib.Path(home) / ".config" if home else None


class StorageLocator:
    """Maps artifact file names onto a stable per-user directory."""

    def __init__(self, app_name: str = APP_NAME, base_dir: Optional[PathLike] = None,
                 config_dir_finder=user_config_dir):
        self.app_name = app_name
        self.base_dir = pathlib.Path(base_dir).expanduser() if base_dir else None
        self._config_dir_finder = config_dir_finder

    def directory(self) -> Optional[pathlib.Path]:
        if self.base_dir is not None:
            return self.base_dir
        root = self._config_dir_finder()
        if root is None:
            return None
        return root / self.app_name

    def resolve(self, filename: str) -> pathlib.Path:
        directory = self.directory()
        if directory is None:
            # no home / appdata: keep the artifact next to the working directory
            logger.debug("No user config directory, using %s relative to cwd", filename)
            return pathlib.Path(filename)
        try:
            directory.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
            if self.base_dir is None:
                # our own namespace dir; may predate the mode above
                os.chmod(directory, DIR_MODE)
        except OSError as e:
            logger.warning("Could not prepare config directory %s: %s", directory, e)
        return directory / filename


class ArtifactStore:
    """Reads and writes the DER-encoded CA certificate and PKCS#8 key."""

    def _read_bytes(self, path: pathlib.Path) -> bytes:
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError as e:
            raise ArtifactNotFoundError(f"{path} does not exist", path) from e
        except OSError as e:
            raise ArtifactReadError(f"could not read {path}: {e}", path) from e

    def read_certificate(self, path: PathLike) -> x509.Certificate:
        path = pathlib.Path(path)
        data = self._read_bytes(path)
        try:
            return x509.load_der_x509_certificate(data)
        except ValueError as e:
            raise ArtifactParseError(f"{path} is not a DER certificate: {e}", path) from e

    def read_private_key(self, path: PathLike) -> rsa.RSAPrivateKey:
        path = pathlib.Path(path)
        data = self._read_bytes(path)
        try:
            key = serialization.load_der_private_key(data, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise ArtifactParseError(f"{path} is not a DER private key: {e}", path) from e
        if not isinstance(key, rsa.RSAPrivateKey):
            raise WrongKeyTypeError(
                f"{path} contains a {type(key).__name__}, expected an RSA key", path)
        return key

    def _write_bytes(self, path: pathlib.Path, data: bytes) -> None:
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            # O_CREAT mode is ignored for files that already existed
            os.chmod(path, FILE_MODE)
        except OSError as e:
            raise PersistError(f"could not write {path}: {e}", path) from e

    def write_certificate(self, path: PathLike, data: bytes) -> None:
        self._write_bytes(pathlib.Path(path), data)

    def write_private_key(self, path: PathLike, data: bytes) -> None:
        self._write_bytes(pathlib.Path(path), data)
