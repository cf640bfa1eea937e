#!/usr/bin/env python
# -*- coding: utf-8 -*-

# autocert - generic acme api functions
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE


class CertificateMaterial:
    """Certificate data as handed out by an authority (PEM encoded bytes)."""

    def __init__(self, domain, certificate, issuer=None, cert_url=None, cert_stable_url=None):
        self.domain = domain
        self.certificate = certificate
        self.issuer = issuer
        self.cert_url = cert_url
        self.cert_stable_url = cert_stable_url


class ACMEAuthority:
    # @brief Init class with config
    # @param config Configuration data
    # @param key Account key data
    # @param registration account reference from a previous registration (optional)
    def __init__(self, config, key, registration=None):
        self.key = key
        self.config = config
        self.registration = registration

    # @brief use an existing account reference for further requests
    def set_registration(self, registration):
        self.registration = registration

    # @brief register an account over ACME
    # @param email contact address of the account
    # @return the account reference
    def register(self, email):
        raise NotImplementedError

    # @brief bind the challenge responder used to prove control over the domains
    # @param challenge_type ACME challenge type (http-01, tls-alpn-01, dns-01)
    # @param settings responder options (port, webroot, dns provider settings)
    def set_challenge_responder(self, challenge_type, settings):
        raise NotImplementedError

    # @brief function to fetch certificate using ACME
    # @param domains list of domains in the certificate, first is CN
    # @param csr the certificate signing request
    # @return CertificateMaterial
    def obtain(self, domains, csr):
        raise NotImplementedError

    # @brief fetch a fresh certificate for the domains of an existing one
    # @param material the CertificateMaterial to renew
    # @param csr the certificate signing request for the new certificate
    # @return CertificateMaterial
    def renew(self, material, csr):
        raise NotImplementedError
