"""
TLS certificate lifecycle for the webhook listener.

The manager loads the serving certificate and key from disk, parses the leaf
with ``cryptography`` and builds a per-certificate ``ssl.SSLContext``. The
listener context installs an SNI callback that moves every new handshake
onto the currently active per-certificate context, so a rotated certificate
(e.g. renewed by cert-manager) is presented to new connections without a
restart. Established connections keep the certificate they negotiated.

The active certificate is the only shared mutable state. It has a single
writer (``install``) and is swapped by reference under a lock.
"""

import asyncio
import contextlib
import hashlib
import logging
import ssl
import tempfile
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from cryptography import x509
from cryptography.exceptions import InvalidSignature

from deployment_hpa_validator.constants import (
    CERT_EXPIRY_WARNING_DAYS,
    CODE_CERT_CHAIN_INVALID,
    CODE_CERT_EXPIRED,
    CODE_CERT_INVALID,
    CODE_CERT_NOT_FOUND,
    DEFAULT_CERT_CHECK_INTERVAL_SECONDS,
    TLS_CIPHERS,
)
from deployment_hpa_validator.errors import WebhookError, certificate_error
from deployment_hpa_validator.observability.metrics import WebhookMetrics

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class CertificateInfo:
    """Summary of an X.509 serving certificate."""

    subject: str
    issuer: str
    not_before: datetime
    not_after: datetime
    days_until_expiry: int
    dns_names: tuple[str, ...] = ()
    ip_addresses: tuple[str, ...] = ()
    is_expired: bool = False

    @classmethod
    def from_x509(cls, cert: x509.Certificate, now: datetime | None = None) -> "CertificateInfo":
        now = now or datetime.now(UTC)
        not_after = cert.not_valid_after_utc
        try:
            san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
            dns_names = tuple(san.get_values_for_type(x509.DNSName))
            ip_addresses = tuple(str(ip) for ip in san.get_values_for_type(x509.IPAddress))
        except x509.ExtensionNotFound:
            dns_names, ip_addresses = (), ()
        return cls(
            subject=cert.subject.rfc4514_string(),
            issuer=cert.issuer.rfc4514_string(),
            not_before=cert.not_valid_before_utc,
            not_after=not_after,
            days_until_expiry=days_until(not_after, now),
            dns_names=dns_names,
            ip_addresses=ip_addresses,
            is_expired=now > not_after,
        )

    def remaining_days(self, now: datetime | None = None) -> int:
        """Whole days left at ``now`` (negative once expired)."""
        return days_until(self.not_after, now or datetime.now(UTC))


@dataclass(frozen=True)
class TLSCertificate:
    """A loaded certificate/key pair and the server context serving it."""

    cert_pem: bytes
    key_pem: bytes
    fingerprint: str
    info: CertificateInfo
    certificate: x509.Certificate = field(repr=False)
    context: ssl.SSLContext = field(repr=False)


def days_until(moment: datetime, now: datetime) -> int:
    return int((moment - now).total_seconds() / SECONDS_PER_DAY)


def fingerprint(cert_pem: bytes, key_pem: bytes) -> str:
    """SHA-256 over the certificate and key bytes."""
    digest = hashlib.sha256()
    digest.update(cert_pem)
    digest.update(b"\0")
    digest.update(key_pem)
    return digest.hexdigest()


def new_server_context() -> ssl.SSLContext:
    """Server context restricted to TLS 1.2+ and the webhook's cipher list."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.set_ciphers(TLS_CIPHERS)
    return context


def load_chain_from_pem(context: ssl.SSLContext, cert_pem: bytes, key_pem: bytes) -> None:
    """
    Load an in-memory certificate chain and key into ``context``.

    ``ssl`` only loads chains from paths, so the bytes go through a private
    temporary directory that is removed before returning.
    """
    with tempfile.TemporaryDirectory(prefix="webhook-tls-") as tmp:
        cert_path = Path(tmp) / "tls.crt"
        key_path = Path(tmp) / "tls.key"
        cert_path.write_bytes(cert_pem)
        key_path.touch(mode=0o600)
        key_path.write_bytes(key_pem)
        context.load_cert_chain(cert_path, key_path)


ReloadCallback = Callable[[TLSCertificate], None]


class CertificateManager:
    """Loads, monitors and hot-swaps the webhook's serving certificate."""

    def __init__(
        self,
        cert_file: str,
        key_file: str,
        ca_file: str = "",
        metrics: WebhookMetrics | None = None,
        check_interval: float = DEFAULT_CERT_CHECK_INTERVAL_SECONDS,
    ):
        """
        Initialize certificate manager.

        Args:
            cert_file: Path to the PEM certificate (chain)
            key_file: Path to the PEM private key
            ca_file: Optional CA bundle the leaf must be issued by
            metrics: Metrics collector for certificate gauges and counters
            check_interval: Seconds between reload checks
        """
        self.cert_file = cert_file
        self.key_file = key_file
        self.ca_file = ca_file
        self.metrics = metrics
        self.check_interval = check_interval
        self._lock = threading.Lock()
        self._current: TLSCertificate | None = None
        self._reload_callback: ReloadCallback | None = None
        self._monitor_task: asyncio.Task | None = None

    def _read_files(self) -> tuple[bytes, bytes]:
        for kind, path in (("serving", self.cert_file), ("private key", self.key_file)):
            if not Path(path).is_file():
                raise certificate_error(
                    kind,
                    FileNotFoundError(f"{kind} file not found or not a regular file: {path}"),
                    CODE_CERT_NOT_FOUND,
                )
        try:
            return Path(self.cert_file).read_bytes(), Path(self.key_file).read_bytes()
        except OSError as e:
            raise certificate_error("serving", e, CODE_CERT_NOT_FOUND) from e

    def load_certificate(self) -> TLSCertificate:
        """
        Load and validate the certificate and key from disk.

        The certificate is not installed; see ``install``.

        Returns:
            Parsed certificate with a ready-to-use server context

        Raises:
            WebhookError: Certificate error if the files are missing,
                unparsable, mismatched, expired or not yet valid
        """
        return self.build_certificate(*self._read_files())

    def build_certificate(self, cert_pem: bytes, key_pem: bytes) -> TLSCertificate:
        """
        Validate certificate and key bytes already read from disk.

        The fingerprint, parsed certificate and server context all derive
        from these same bytes.

        Raises:
            WebhookError: Certificate error if the bytes are unparsable,
                mismatched, expired or not yet valid
        """
        try:
            cert = x509.load_pem_x509_certificate(cert_pem)
        except ValueError as e:
            raise certificate_error("serving", e) from e

        now = datetime.now(UTC)
        info = CertificateInfo.from_x509(cert, now)
        if now < info.not_before:
            raise certificate_error(
                "serving",
                ValueError(f"certificate is not valid until {info.not_before.isoformat()}"),
            )
        if info.is_expired:
            if self.metrics is not None:
                self.metrics.record_certificate_invalid()
            raise certificate_error(
                "serving",
                ValueError(f"certificate expired at {info.not_after.isoformat()}"),
                CODE_CERT_EXPIRED,
            )

        context = new_server_context()
        try:
            load_chain_from_pem(context, cert_pem, key_pem)
        except (ssl.SSLError, OSError) as e:
            raise certificate_error("serving", e, CODE_CERT_INVALID) from e

        if self.metrics is not None:
            self.metrics.record_certificate(info.not_after)
        self._warn_on_expiry(info)

        return TLSCertificate(
            cert_pem=cert_pem,
            key_pem=key_pem,
            fingerprint=fingerprint(cert_pem, key_pem),
            info=info,
            certificate=cert,
            context=context,
        )

    def install(self, certificate: TLSCertificate) -> None:
        """Make ``certificate`` the one presented to new handshakes."""
        with self._lock:
            self._current = certificate
        logger.info(
            f"Installed serving certificate {certificate.info.subject} "
            f"(expires {certificate.info.not_after.isoformat()})",
            extra={
                "cert_file": self.cert_file,
                "expires_in_days": certificate.info.days_until_expiry,
            },
        )

    def get_current_certificate(self) -> TLSCertificate | None:
        with self._lock:
            return self._current

    def get_certificate_info(self) -> CertificateInfo | None:
        current = self.get_current_certificate()
        return current.info if current is not None else None

    def set_reload_callback(self, callback: ReloadCallback | None) -> None:
        """Register the single callback invoked after a successful reload."""
        self._reload_callback = callback

    def build_server_context(self) -> ssl.SSLContext:
        """
        Build the listener context.

        Raises:
            WebhookError: If no certificate has been installed
        """
        current = self.get_current_certificate()
        if current is None:
            raise certificate_error(
                "serving",
                RuntimeError("no certificate installed"),
                CODE_CERT_NOT_FOUND,
            )
        context = new_server_context()
        # Fallback identity for handshakes that never reach the callback
        load_chain_from_pem(context, current.cert_pem, current.key_pem)
        context.sni_callback = self._select_context
        return context

    def _select_context(
        self, ssl_obj: ssl.SSLObject, server_name: str | None, listener: ssl.SSLContext
    ) -> None:
        current = self.get_current_certificate()
        if current is not None:
            ssl_obj.context = current.context
        return None

    def reload_if_changed(self) -> bool:
        """
        Reload the certificate when the files on disk changed.

        Returns:
            True if a new certificate was installed

        Raises:
            WebhookError: Certificate error if the changed files are invalid;
                the active certificate stays in place
        """
        cert_pem, key_pem = self._read_files()
        current = self.get_current_certificate()
        if current is not None and fingerprint(cert_pem, key_pem) == current.fingerprint:
            return False

        try:
            certificate = self.build_certificate(cert_pem, key_pem)
        except WebhookError:
            if self.metrics is not None:
                self.metrics.record_certificate_reload(False)
            raise

        self.install(certificate)
        if self.metrics is not None:
            self.metrics.record_certificate_reload(True)
        logger.info("Serving certificate reloaded", extra={"cert_file": self.cert_file})

        if self._reload_callback is not None:
            self._reload_callback(certificate)
        return True

    def validate_certificate_chain(self) -> None:
        """
        Verify the active leaf was issued by a certificate in the CA bundle.

        Does nothing when no CA bundle is configured.

        Raises:
            WebhookError: Certificate error with code CERT_CHAIN_INVALID
        """
        if not self.ca_file:
            return
        current = self.get_current_certificate()
        if current is None:
            raise certificate_error(
                "serving", RuntimeError("no certificate installed"), CODE_CERT_NOT_FOUND
            )

        try:
            authorities = x509.load_pem_x509_certificates(Path(self.ca_file).read_bytes())
        except (OSError, ValueError) as e:
            raise certificate_error("CA", e, CODE_CERT_CHAIN_INVALID) from e

        for authority in authorities:
            try:
                current.certificate.verify_directly_issued_by(authority)
            except (ValueError, TypeError, InvalidSignature):
                continue
            return

        raise certificate_error(
            "CA",
            ValueError(f"certificate {current.info.subject} is not issued by {self.ca_file}"),
            CODE_CERT_CHAIN_INVALID,
        )

    async def check_once(self) -> bool:
        """
        One monitoring tick: reload on change and re-evaluate expiry.

        Errors are logged and counted; the active certificate is kept.
        """
        try:
            changed = await asyncio.to_thread(self.reload_if_changed)
        except Exception as e:
            logger.error(
                f"Certificate reload check failed, keeping active certificate: {e}",
                extra={"cert_file": self.cert_file},
            )
            if self.metrics is not None:
                self.metrics.record_monitoring_error(e)
            return False

        info = self.get_certificate_info()
        if info is not None and not changed:
            if self.metrics is not None:
                self.metrics.record_certificate(info.not_after)
            self._warn_on_expiry(info)
        return changed

    def start_monitoring(self, interval: float | None = None) -> None:
        """Start the background reload loop on the running event loop."""
        if self._monitor_task is not None and not self._monitor_task.done():
            return
        self._monitor_task = asyncio.create_task(
            self._monitor(interval or self.check_interval), name="certificate-monitor"
        )
        logger.info(f"Certificate monitoring started (interval {interval or self.check_interval}s)")

    async def stop_monitoring(self) -> None:
        task, self._monitor_task = self._monitor_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Certificate monitoring stopped")

    @property
    def monitoring(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    async def _monitor(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.check_once()

    def _warn_on_expiry(self, info: CertificateInfo) -> None:
        remaining = info.remaining_days()
        if remaining < 0 or datetime.now(UTC) > info.not_after:
            logger.error(
                f"Serving certificate expired at {info.not_after.isoformat()}",
                extra={"cert_file": self.cert_file, "expires_in_days": remaining},
            )
        elif remaining <= CERT_EXPIRY_WARNING_DAYS:
            logger.warning(
                f"Serving certificate expires in {remaining} days",
                extra={"cert_file": self.cert_file, "expires_in_days": remaining},
            )
