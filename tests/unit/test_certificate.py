"""Tests for CA certificate loading."""

from pathlib import Path

import pytest

from vm_test_manager.certificate import (
    PEM_BEGIN,
    Certificate,
    CertificateLoadError,
    load_certificate,
)


def test_builtin_certificate_is_pem() -> None:
    """The bundled certificate loads without a path."""
    certificate = load_certificate(None)

    assert certificate.source == "built-in"
    assert certificate.pem.startswith(PEM_BEGIN)


def test_loads_certificate_from_file(tmp_path: Path) -> None:
    """A user-supplied certificate replaces the built-in one."""
    path = tmp_path / "ca.crt"
    path.write_text(Certificate.default().pem)

    certificate = load_certificate(path)

    assert certificate.source == str(path)
    assert certificate.pem == Certificate.default().pem


def test_missing_file(tmp_path: Path) -> None:
    """A missing file is a load error."""
    with pytest.raises(CertificateLoadError, match="Could not read"):
        load_certificate(tmp_path / "missing.crt")


def test_rejects_non_pem(tmp_path: Path) -> None:
    """Files without PEM markers are rejected."""
    path = tmp_path / "ca.crt"
    path.write_text("not a certificate")

    with pytest.raises(CertificateLoadError, match="not a PEM"):
        load_certificate(path)
