#!/usr/bin/env python
# -*- coding: utf-8 -*-

# iis - internet information services configurator (windows)
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import io
import os
import secrets
import subprocess

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from autocert import tools
from autocert.errors import ConfigurationInvalid
from autocert.webserver.abstract import AbstractConfigurator
from autocert.tools import log

POWERSHELL = "powershell -NoProfile -NonInteractive -Command"


# @brief quote a value as powershell single quoted string
def ps_quote(value):
    return "'{}'".format(str(value).replace("'", "''"))


class Configurator(AbstractConfigurator):
    def __init__(self, settings):
        AbstractConfigurator.__init__(self, settings)
        self.site = settings.get('site', "Default Web Site")
        self.port = int(settings.get('port', 443))
        self.test_command = self._powershell(
            "Import-Module WebAdministration; if (-not (Get-Website -Name {0})) {{ "
            "Write-Error 'IIS site {0} not found'; exit 1 }}".format(ps_quote(self.site)))
        self.reload_command = self._powershell(
            "Import-Module WebAdministration; Restart-WebAppPool -Name (Get-Website -Name {}).applicationPool".format(
                ps_quote(self.site)))

    @staticmethod
    def _powershell(script):
        return '{} "{}"'.format(POWERSHELL, script.replace('"', '\\"'))

    # @brief bundle certificate, chain and key into a password protected pfx file
    def _write_pfx(self, target, password):
        with io.open(target.key_path, 'rb') as key_fd:
            key = serialization.load_pem_private_key(key_fd.read(), None)
        cert = tools.read_pem_file(target.cert_path)
        cas = None
        if target.chain_path and os.path.isfile(target.chain_path):
            with io.open(target.chain_path, 'rb') as chain_fd:
                cas = [tools.convert_pem_str_to_cert(block) for block in
                       tools.PEM_CERT_REGEX.findall(chain_fd.read().decode('utf8'))]
        pfx = pkcs12.serialize_key_and_certificates(
            target.primary.encode('utf8'), key, cert, cas,
            serialization.BestAvailableEncryption(password.encode('utf8')))
        pfx_path = os.path.join(os.path.dirname(target.cert_path), "cert.pfx")
        tools.write_file(pfx_path, pfx, 0o600)
        return pfx_path

    # @brief import the certificate and add/update one https binding per host name
    def configure(self, target):
        password = secrets.token_urlsafe(24)
        pfx_path = self._write_pfx(target, password)
        script = [
            "Import-Module WebAdministration",
            "$cert = Import-PfxCertificate -FilePath {} -CertStoreLocation Cert:\\LocalMachine\\My "
            "-Password (ConvertTo-SecureString -String {} -AsPlainText -Force)".format(ps_quote(pfx_path),
                                                                                     ps_quote(password)),
        ]
        for host in target.domains.split(" "):
            binding = "-Name {} -Protocol https -Port {} -HostHeader {}".format(ps_quote(self.site), self.port,
                                                                              ps_quote(host))
            script.append("if (-not (Get-WebBinding {0})) {{ New-WebBinding {0} -SslFlags 1 }}".format(binding))
            script.append("(Get-WebBinding {}).AddSslCertificate($cert.Thumbprint, 'my')".format(binding))
        command = self._powershell("; ".join(script))
        try:
            self._run(command)
        except (subprocess.CalledProcessError, OSError) as e:
            raise ConfigurationInvalid(self._describe_failure("IIS binding update", e))
        log("Bound certificate for {} to IIS site '{}'".format(target.domains, self.site))
