import logging
import pathlib
import datetime
from typing import Callable, NamedTuple, Optional, Tuple

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.x509.oid import NameOID, ExtendedKeyUsageOID
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import Encoding, PrivateFormat, PublicFormat, NoEncryption

from .config import CASettings
from .errors import (
    ArtifactNotFoundError,
    KeyGenerationError,
    KeyMismatchError,
    LoadError,
    PersistError,
    SigningError,
    TemplateError,
)
from .serial import SerialAllocator
from .storage import ArtifactStore, StorageLocator

logger = logging.getLogger(__name__)

KEY_SIZE = 2048
PUBLIC_EXPONENT = 65537
COMMON_NAME = "Awesome TLS"
ORGANIZATION = "Sleeyax"
DNS_NAMES = ("awesometls", "localhost")

# one counter per process; bootstrappers share it unless handed their own
PROCESS_SERIALS = SerialAllocator()


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def add_years(moment: datetime.datetime, years: int) -> datetime.datetime:
    """Shift by calendar years; Feb 29 rolls over to Mar 1 in non-leap years."""
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        return moment.replace(year=moment.year + years, month=3, day=1)


def subject_key_identifier(public_key: rsa.RSAPublicKey) -> x509.SubjectKeyIdentifier:
    # SHA-1 over the whole SubjectPublicKeyInfo, not just the key bit string
    spki = public_key.public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)
    digest = hashes.Hash(hashes.SHA1())
    digest.update(spki)
    return x509.SubjectKeyIdentifier(digest.finalize())


class CertificateAuthority(NamedTuple):
    certificate: x509.Certificate
    private_key: rsa.RSAPrivateKey

    def certificate_der(self) -> bytes:
        return self.certificate.public_bytes(Encoding.DER)

    def certificate_pem(self) -> bytes:
        return self.certificate.public_bytes(Encoding.PEM)

    def private_key_der(self) -> bytes:
        return self.private_key.private_bytes(Encoding.DER, PrivateFormat.PKCS8, NoEncryption())

    def fingerprint(self) -> str:
        return self.certificate.fingerprint(hashes.SHA256()).hex()

    def matches_key(self) -> bool:
        cert_pub = self.certificate.public_key().public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)
        key_pub = self.private_key.public_key().public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)
        return cert_pub == key_pub


class GeneratedCA(NamedTuple):
    authority: CertificateAuthority
    certificate_der: bytes


class CAGenerator:
    """Mints a fresh RSA key and a self-signed CA certificate for it."""

    def __init__(self, serials: SerialAllocator,
                 clock: Callable[[], datetime.datetime] = _utcnow):
        self.serials = serials
        self.clock = clock

    def generate(self) -> GeneratedCA:
        try:
            key = rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=KEY_SIZE)
        except (ValueError, UnsupportedAlgorithm) as e:
            raise KeyGenerationError(f"RSA key generation failed: {e}") from e

        # X.509 times have second precision
        now = self.clock().replace(microsecond=0)
        name = x509.Name([
            x509.NameAttribute(NameOID.COMMON_NAME, COMMON_NAME),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, ORGANIZATION),
        ])
        try:
            builder = (
                x509.CertificateBuilder()
                .subject_name(name)
                .issuer_name(name)
                .public_key(key.public_key())
                .serial_number(self.serials.next())
                .not_valid_before(add_years(now, -1))
                .not_valid_after(add_years(now, 1))
                .add_extension(subject_key_identifier(key.public_key()), critical=False)
                .add_extension(x509.KeyUsage(digital_signature=True, key_encipherment=True, key_cert_sign=True,
                                             content_commitment=False, data_encipherment=False, key_agreement=False,
                                             crl_sign=False, encipher_only=False, decipher_only=False), critical=True)
                .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
                .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
                .add_extension(x509.SubjectAlternativeName([x509.DNSName(n) for n in DNS_NAMES]), critical=False)
            )
        except (ValueError, TypeError) as e:
            raise TemplateError(f"invalid CA certificate template: {e}") from e

        try:
            raw = builder.sign(key, hashes.SHA256()).public_bytes(Encoding.DER)
            cert = x509.load_der_x509_certificate(raw)
        except (ValueError, TypeError) as e:
            raise SigningError(f"self-signing the CA certificate failed: {e}") from e

        logger.debug("Generated CA certificate serial=%d", cert.serial_number)
        return GeneratedCA(CertificateAuthority(cert, key), raw)


class CABootstrapper:
    """Recovers the persisted CA or generates and persists a new one."""

    def __init__(self, locator: StorageLocator, store: ArtifactStore, generator: CAGenerator,
                 cert_file: str = "ca.der", key_file: str = "caKey.der",
                 verify_key_match: bool = True):
        self.locator = locator
        self.store = store
        self.generator = generator
        self.cert_file = cert_file
        self.key_file = key_file
        self.verify_key_match = verify_key_match

    @classmethod
    def from_settings(cls, settings: Optional[CASettings] = None,
                      serials: Optional[SerialAllocator] = None) -> "CABootstrapper":
        settings = settings or CASettings()
        return cls(
            locator=StorageLocator(app_name=settings.app_name, base_dir=settings.config_dir),
            store=ArtifactStore(),
            generator=CAGenerator(serials or PROCESS_SERIALS),
            cert_file=settings.cert_file,
            key_file=settings.key_file,
            verify_key_match=settings.verify_key_match,
        )

    def paths(self) -> Tuple[pathlib.Path, pathlib.Path]:
        return self.locator.resolve(self.cert_file), self.locator.resolve(self.key_file)

    def _recover(self, certificate: x509.Certificate, key_path: pathlib.Path) -> CertificateAuthority:
        authority = CertificateAuthority(certificate, self.store.read_private_key(key_path))
        if self.verify_key_match and not authority.matches_key():
            raise KeyMismatchError(f"{key_path} does not hold the key of the stored CA certificate", key_path)
        return authority

    def load(self) -> CertificateAuthority:
        """Recover the CA from disk; raises a LoadError subclass on any miss."""
        cert_path, key_path = self.paths()
        return self._recover(self.store.read_certificate(cert_path), key_path)

    def bootstrap(self) -> CertificateAuthority:
        cert_path, key_path = self.paths()
        try:
            certificate = self.store.read_certificate(cert_path)
        except ArtifactNotFoundError:
            logger.debug("No CA certificate at %s, generating a new CA", cert_path)
            return self._generate(cert_path, key_path)
        except LoadError as e:
            logger.warning("Error reading CA certificate from disk %s: %s", cert_path, e)
            return self._generate(cert_path, key_path)

        try:
            authority = self._recover(certificate, key_path)
        except LoadError as e:
            logger.warning("Error reading CA private key from disk %s: %s", key_path, e)
            return self._generate(cert_path, key_path)

        logger.info("Loaded CA serial=%d from %s", authority.certificate.serial_number, cert_path)
        return authority

    def _generate(self, cert_path: pathlib.Path, key_path: pathlib.Path) -> CertificateAuthority:
        generated = self.generator.generate()
        authority = generated.authority
        try:
            key_der = authority.private_key_der()
        except (ValueError, TypeError) as e:
            raise PersistError(f"could not encode CA private key: {e}", key_path) from e

        self.store.write_certificate(cert_path, generated.certificate_der)
        self.store.write_private_key(key_path, key_der)
        logger.info("Generated new CA serial=%d at %s", authority.certificate.serial_number, cert_path)
        return authority


def ensure_ca(settings: Optional[CASettings] = None,
              serials: Optional[SerialAllocator] = None) -> CertificateAuthority:
    return CABootstrapper.from_settings(settings, serials).bootstrap()
