#!/usr/bin/env python
# -*- coding: utf-8 -*-

# tlsalpn - standalone tls-alpn-01 challenge server (RFC8737)
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import datetime
import os
import shutil
import socketserver
import ssl
import tempfile
import threading

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from autocert import tools
from autocert.modes.abstract import AbstractChallengeHandler
from autocert.tools import log

ACME_TLS_PROTOCOL = "acme-tls/1"
# id-pe-acmeIdentifier
ACME_IDENTIFIER_OID = x509.ObjectIdentifier("1.3.6.1.5.5.7.1.31")


class _TLSServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    allow_reuse_address = True
    daemon_threads = True


# @brief create the self-signed validation certificate for one domain
# @return tuple of (certificate, key)
def validation_certificate(domain, keyauthorization):
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)])
    digest = tools.hash_of_str(keyauthorization)
    now = tools.utcnow()
    builder = x509.CertificateBuilder()
    builder = builder.subject_name(name).issuer_name(name)
    builder = builder.public_key(key.public_key())
    builder = builder.serial_number(x509.random_serial_number())
    builder = builder.not_valid_before(now - datetime.timedelta(days=1))
    builder = builder.not_valid_after(now + datetime.timedelta(days=1))
    builder = builder.add_extension(x509.SubjectAlternativeName([x509.DNSName(domain)]), critical=False)
    # extension value is the DER encoded OCTET STRING of the key authorization digest
    builder = builder.add_extension(x509.UnrecognizedExtension(ACME_IDENTIFIER_OID, b"\x04\x20" + digest),
                                    critical=True)
    return builder.sign(key, hashes.SHA256()), key


class ChallengeHandler(AbstractChallengeHandler):
    @staticmethod
    def get_challenge_type():
        return "tls-alpn-01"

    def __init__(self, config):
        AbstractChallengeHandler.__init__(self, config)
        self.bind_address = config.get("bind_address", "")
        self.port = int(config.get("port", 443))
        self.contexts = {}
        self.server = None
        self.server_thread = None
        self.workdir = None

    def _context(self, cert_file, key_file):
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.set_alpn_protocols([ACME_TLS_PROTOCOL])
        context.load_cert_chain(cert_file, key_file)
        return context

    def create_challenge(self, domain, thumbprint, token):
        if self.workdir is None:
            self.workdir = tempfile.mkdtemp(prefix="autocert-tlsalpn-")
        cert, key = validation_certificate(domain, self.key_authorization(thumbprint, token))
        cert_file = os.path.join(self.workdir, "{}.crt".format(domain))
        key_file = os.path.join(self.workdir, "{}.key".format(domain))
        tools.write_file(cert_file, tools.convert_cert_to_pem_str(cert))
        tools.write_file(key_file, tools.convert_key_to_pem_bytes(key), 0o600)
        self.contexts[domain] = self._context(cert_file, key_file)

    def destroy_challenge(self, domain, thumbprint, token):
        self.contexts.pop(domain, None)
        for suffix in ("crt", "key"):
            path = os.path.join(self.workdir, "{}.{}".format(domain, suffix))
            if os.path.exists(path):
                os.remove(path)
        if len(self.contexts) == 0 and self.workdir is not None:
            shutil.rmtree(self.workdir, ignore_errors=True)
            self.workdir = None

    def _create_server(self, default_context):
        contexts = self.contexts

        def _select_context(sslobj, server_name, _context):
            if server_name not in contexts:
                log("tls-alpn-01 request for unknown name '{}'".format(server_name), debug=True)
                return ssl.ALERT_DESCRIPTION_UNRECOGNIZED_NAME
            sslobj.context = contexts[server_name]
            return None

        default_context.sni_callback = _select_context

        class _TLSRequestHandler(socketserver.BaseRequestHandler):
            def handle(self):
                try:
                    conn = default_context.wrap_socket(self.request, server_side=True)
                    log("tls-alpn-01 handshake from {} completed ({})".format(
                        self.client_address[0], conn.selected_alpn_protocol()), debug=True)
                    conn.close()
                except (ssl.SSLError, OSError) as e:
                    log("tls-alpn-01 handshake from {} failed: {}".format(self.client_address[0], e), debug=True)

        return _TLSServer((self.bind_address, self.port), _TLSRequestHandler)

    def start_challenge(self, domain, thumbprint, token):
        if self.server is None:
            default_context = self._context(os.path.join(self.workdir, "{}.crt".format(domain)),
                                            os.path.join(self.workdir, "{}.key".format(domain)))
            self.server = self._create_server(default_context)
        self.server_thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self.server_thread.start()
        log("Serving tls-alpn-01 challenges on port {}".format(self.port), debug=True)

    def stop_challenge(self, domain, thumbprint, token):
        if self.server_thread is not None and self.server_thread.is_alive():
            self.server.shutdown()
            self.server_thread.join()
        self.server_thread = None
        if self.server is not None:
            self.server.server_close()
            self.server = None
