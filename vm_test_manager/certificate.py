"""CA certificate handed to the app under test."""

import logging
from dataclasses import dataclass
from importlib import resources
from pathlib import Path

from vm_test_manager.errors import ManagerError

log = logging.getLogger(__name__)

PEM_BEGIN = "-----BEGIN CERTIFICATE-----"
PEM_END = "-----END CERTIFICATE-----"
DEFAULT_CERTIFICATE_RESOURCE = "assets/openvpn.ca.crt"


class CertificateLoadError(ManagerError):
    """Raised when a CA certificate cannot be read or is not PEM."""


@dataclass(frozen=True, kw_only=True)
class Certificate:
    """A PEM-encoded CA certificate."""

    pem: str
    source: str

    @classmethod
    def from_file(cls, path: Path) -> "Certificate":
        """Load a certificate from ``path``."""
        try:
            text = path.read_text()
        except OSError as exc:
            raise CertificateLoadError(
                f"Could not read CA certificate {path}: {exc}"
            ) from exc
        return cls.from_pem(text, source=str(path))

    @classmethod
    def from_pem(cls, text: str, source: str) -> "Certificate":
        """Validate PEM text and wrap it."""
        if PEM_BEGIN not in text or PEM_END not in text:
            raise CertificateLoadError(f"{source} is not a PEM encoded certificate")
        return cls(pem=text.strip() + "\n", source=source)

    @classmethod
    def default(cls) -> "Certificate":
        """The certificate bundled with this package."""
        resource = resources.files("vm_test_manager").joinpath(
            DEFAULT_CERTIFICATE_RESOURCE
        )
        return cls.from_pem(resource.read_text(), source="built-in")


def load_certificate(path: Path | None) -> Certificate:
    """Load the certificate at ``path``, or fall back to the built-in one."""
    if path is None:
        log.debug("Using the built-in CA certificate")
        return Certificate.default()
    log.info("Using CA certificate %s", path)
    return Certificate.from_file(path)
