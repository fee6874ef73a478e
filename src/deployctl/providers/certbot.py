"""Certbot provider for Let's Encrypt certificates installed into nginx."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from .commands import run_command


class CertbotError(RuntimeError):
    """Raised when certbot fails."""


@dataclass(slots=True)
class CertbotProvider:
    """Issue, reinstall and delete certificates with the nginx plugin."""

    certbot_bin: str = "certbot"
    live_dir: Path = Path("/etc/letsencrypt/live")

    def certificate_exists(self, cert_name: str) -> bool:
        """Return True when a lineage called *cert_name* is present."""
        return (self.live_dir / cert_name).is_dir()

    def issue(
        self,
        cert_name: str,
        domains: Sequence[str],
        *,
        email: str | None,
        redirect: bool = True,
        force_renewal: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        """Obtain a certificate for *domains* and install it into nginx."""
        args = self._nginx_args(cert_name, domains, email=email, redirect=redirect)
        if force_renewal:
            args.append("--force-renewal")
        return self._run(args)

    def reinstall(
        self,
        cert_name: str,
        domains: Sequence[str],
        *,
        email: str | None,
        redirect: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Install the existing certificate into nginx without contacting the CA."""
        args = self._nginx_args(cert_name, domains, email=email, redirect=redirect)
        args.append("--reinstall")
        return self._run(args)

    def delete(self, cert_name: str) -> bool:
        """Delete the lineage; return ``False`` when it does not exist."""
        if not self.certificate_exists(cert_name):
            return False
        self._run([self.certbot_bin, "delete", "--cert-name", cert_name, "--non-interactive"])
        return True

    # ------------------------------------------------------------------
    def _nginx_args(
        self,
        cert_name: str,
        domains: Sequence[str],
        *,
        email: str | None,
        redirect: bool,
    ) -> list[str]:
        args = [
            self.certbot_bin,
            "--nginx",
            "--cert-name",
            cert_name,
            "--non-interactive",
            "--agree-tos",
        ]
        for domain in domains:
            args.extend(["-d", domain])
        if email:
            args.extend(["--email", email])
        else:
            args.append("--register-unsafely-without-email")
        args.append("--redirect" if redirect else "--no-redirect")
        return args

    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        return run_command(args, error_cls=CertbotError, error_prefix=self.certbot_bin)


__all__ = ["CertbotError", "CertbotProvider"]
