from pathlib import Path
from typing import Optional, Union

PathLike = Union[str, Path]


class CAError(Exception):
    """Base class for CA bootstrap errors."""

    def __init__(self, message: str, path: Optional[PathLike] = None):
        super().__init__(message)
        self.path = Path(path) if path is not None else None


class LoadError(CAError):
    """Raised when a persisted artifact cannot be recovered."""


class ArtifactNotFoundError(LoadError):
    """Raised when an artifact file does not exist (first run)."""


class ArtifactReadError(LoadError):
    """Raised when an artifact exists but cannot be read."""


class ArtifactParseError(LoadError):
    """Raised when artifact bytes are not in the expected DER encoding."""


class KeyMismatchError(ArtifactParseError):
    """Raised when the certificate's public key does not belong to the private key."""


class WrongKeyTypeError(LoadError):
    """Raised when the key container holds a non-RSA key."""


class GenerationError(CAError):
    """Raised when a fresh CA cannot be produced."""


class KeyGenerationError(GenerationError):
    pass


class TemplateError(GenerationError):
    pass


class SigningError(GenerationError):
    pass


class PersistError(CAError):
    """Raised when a generated CA cannot be written to disk."""
