"""TLS configuration for the node's HTTP server."""

from __future__ import annotations

import re
import ssl
from dataclasses import dataclass, field
from typing import Callable

TLSOption = Callable[["TLSConfig"], None]

_CIPHER_NAMES = {
    "TLS_ECDHE_ECDSA_WITH_AES_256_CBC_SHA": "ECDHE-ECDSA-AES256-SHA",
    "TLS_ECDHE_ECDSA_WITH_AES_128_CBC_SHA": "ECDHE-ECDSA-AES128-SHA",
    "TLS_ECDHE_RSA_WITH_AES_256_CBC_SHA": "ECDHE-RSA-AES256-SHA",
    "TLS_ECDHE_RSA_WITH_AES_128_CBC_SHA": "ECDHE-RSA-AES128-SHA",
    "TLS_ECDHE_ECDSA_WITH_AES_256_GCM_SHA384": "ECDHE-ECDSA-AES256-GCM-SHA384",
    "TLS_ECDHE_RSA_WITH_AES_256_GCM_SHA384": "ECDHE-RSA-AES256-GCM-SHA384",
    "TLS_ECDHE_ECDSA_WITH_AES_128_GCM_SHA256": "ECDHE-ECDSA-AES128-GCM-SHA256",
    "TLS_ECDHE_RSA_WITH_AES_128_GCM_SHA256": "ECDHE-RSA-AES128-GCM-SHA256",
}

_PEM_CERT_RE = re.compile(
    r"-----BEGIN CERTIFICATE-----.*?-----END CERTIFICATE-----", re.DOTALL
)


def default_server_ciphers() -> list[str]:
    """Return the accepted cipher suites, with known weak ciphers left out."""
    return list(_CIPHER_NAMES)


@dataclass
class TLSConfig:
    """Server TLS settings.

    ``client_auth`` is ``CERT_OPTIONAL`` when client certificates are only
    requested and ``CERT_REQUIRED`` when they must verify against the CAs.
    """

    min_version: ssl.TLSVersion = ssl.TLSVersion.TLSv1_2
    prefer_server_cipher_suites: bool = True
    cipher_suites: list[str] = field(default_factory=default_server_ciphers)
    client_auth: ssl.VerifyMode = ssl.CERT_OPTIONAL
    certificates: list[tuple[str, str]] = field(default_factory=list)
    client_cas: list[str] = field(default_factory=list)

    def to_ssl_context(self) -> ssl.SSLContext:
        """Build a server-side SSL context from these settings."""
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.minimum_version = self.min_version
        if self.cipher_suites:
            context.set_ciphers(
                ":".join(_CIPHER_NAMES.get(name, name) for name in self.cipher_suites)
            )
        if self.prefer_server_cipher_suites:
            context.options |= ssl.OP_CIPHER_SERVER_PREFERENCE
        for cert, key in self.certificates:
            context.load_cert_chain(cert, key)
        for pem in self.client_cas:
            context.load_verify_locations(cadata=pem)
        context.verify_mode = self.client_auth
        return context


def new_tls_config(*opts: TLSOption) -> TLSConfig:
    """Return a TLS config with secure defaults, adjusted by ``opts`` in order."""
    config = TLSConfig()
    for opt in opts:
        opt(config)
    return config


def with_ca_cert(pem: bytes | str) -> TLSOption:
    """Return an option adding the PEM encoded CA certificates to the client CAs."""
    text = pem.decode("utf-8", "replace") if isinstance(pem, bytes) else pem

    def apply(config: TLSConfig) -> None:
        scratch = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        accepted = []
        for block in _PEM_CERT_RE.findall(text):
            try:
                scratch.load_verify_locations(cadata=block)
            except (ssl.SSLError, ValueError):
                continue
            accepted.append(block)
        if not accepted:
            raise ValueError("could not parse ca cert pem")
        config.client_cas.extend(accepted)

    return apply


def with_ca_from_path(path: str) -> TLSOption:
    """Return an option requiring client certificates signed by the CA at ``path``."""

    def apply(config: TLSConfig) -> None:
        try:
            with open(path, "rb") as handle:
                pem = handle.read()
        except OSError as err:
            raise ValueError(f"error reading ca cert pem: {err}") from err
        config.client_auth = ssl.CERT_REQUIRED
        with_ca_cert(pem)(config)

    return apply


def with_key_pair_from_path(cert: str, key: str) -> TLSOption:
    """Return an option adding the certificate and key files to the config."""

    def apply(config: TLSConfig) -> None:
        ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER).load_cert_chain(cert, key)
        config.certificates.append((cert, key))

    return apply