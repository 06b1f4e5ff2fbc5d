"""
certbot (Let's Encrypt) certificate adapter, webroot plugin.
"""

from __future__ import annotations

import shutil

from hostprov.adapters.base import CertificateIssuer, CommandResult, CommandRunner


class CertbotIssuer(CertificateIssuer):
    """Certificates issued by ``certbot certonly --webroot``.

    certbot only writes under /etc/letsencrypt; the nginx site files
    stay owned by their template steps.
    """

    def __init__(self, runner: CommandRunner):
        self._runner = runner

    @property
    def name(self) -> str:
        return "certbot"

    def is_available(self) -> bool:
        return shutil.which("certbot") is not None

    def has_certificate(self, domain: str) -> bool:
        result = self._runner.run("certbot", ["certificates", "--cert-name", domain])
        return result.ok and f"Certificate Name: {domain}" in result.stdout

    def obtain(self, domain: str, email: str, webroot: str) -> CommandResult:
        return self._runner.run(
            "certbot",
            [
                "certonly",
                "--webroot",
                "-w", webroot,
                "-d", domain,
                "--cert-name", domain,
                "--non-interactive",
                "--agree-tos",
                "--email", email,
                "--keep-until-expiring",
            ],
        )

    def renew(self) -> CommandResult:
        return self._runner.run("certbot", ["renew", "--quiet"])
