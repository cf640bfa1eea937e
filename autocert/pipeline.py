#!/usr/bin/env python
# -*- coding: utf-8 -*-

# pipeline - certificate acquisition (key, csr, authority, fallback)
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

from autocert import tools
from autocert.authority.acme import CertificateMaterial
from autocert.challenge import ChallengeMethod
from autocert.domains import dns_challenge_record, WILDCARD_PREFIX
from autocert.errors import AcquisitionFailed, PipelineError, StoreError, WildcardUnsupportedForMethod
from autocert.store import CertificateRecord
from autocert.tools import log


class Acquisition:
    """Outcome of AcquisitionPipeline.acquire()."""

    def __init__(self, record, dns_records=None, failure=None):
        self.record = record
        self.dns_records = dns_records or []
        # the AcquisitionFailed that caused a self-signed fallback (None if issued by the authority)
        self.failure = failure

    @property
    def self_signed(self):
        return self.record.self_signed


class AcquisitionPipeline:
    """Obtains certificate material for a domain set.

    Steps: KeyGen -> RequestConstruct -> Obtain -> Finalize, with a self-signed
    Fallback whenever the authority part of Obtain fails. Only local failures
    (directory or key file cannot be written) are raised to the caller.
    """

    def __init__(self, settings, store):
        self.settings = settings
        self.store = store

    # @brief run all steps up to (excluding) persisting the record
    # @param domainset the DomainSet to acquire a certificate for
    # @param method the ChallengeMethod selected for the domain set
    # @param acme the ACME authority bound to the account (None if no account is available)
    # @param previous CertificateRecord to renew (optional)
    # @return Acquisition
    def acquire(self, domainset, method, acme=None, previous=None):
        key = self._keygen(domainset)
        names = self._names(domainset)
        csr = self._request(names, key)
        dns_records = list()
        try:
            material = self._obtain(domainset, names, method, csr, acme, previous, dns_records)
            record = self._finalize(domainset, key, material)
            return Acquisition(record, dns_records)
        except AcquisitionFailed as e:
            log("Certificate for {} could not be obtained from the authority: {}".format(domainset, e.cause),
                error=True)
            return Acquisition(self._fallback(domainset, names, key), dns_records, e)

    # @brief persist an acquired record through the certificate store
    def persist(self, record):
        try:
            self.store.save(record)
        except StoreError as e:
            raise PipelineError("Persist", e)

    def _names(self, domainset):
        return [name for name, _ in tools.idna_convert(domainset.names)]

    def _keygen(self, domainset):
        algorithm = self.settings.get('key_algorithm')
        size = self.settings.get('key_size')
        log("Generating {} key for {}".format(algorithm or 'rsa', domainset), debug=True)
        try:
            self.store.create_directory(domainset)
            key = tools.new_ssl_key(None, algorithm, size)
            self.store.write_key(domainset, tools.convert_key_to_pem_bytes(key))
        except (StoreError, ValueError) as e:
            raise PipelineError("KeyGen", e)
        return key

    def _request(self, names, key):
        log("Generating CSR for {}".format(names), debug=True)
        try:
            return tools.new_cert_request(names, key)
        except ValueError as e:
            raise PipelineError("RequestConstruct", e)

    def _obtain(self, domainset, names, method, csr, acme, previous, dns_records):
        if method in (ChallengeMethod.WEBROOT, ChallengeMethod.STANDALONE):
            wildcards = [name for name in domainset if name.startswith(WILDCARD_PREFIX)]
            if wildcards:
                raise WildcardUnsupportedForMethod("{} cannot be validated using {}".format(
                    ", ".join(wildcards), method.value))
        elif method == ChallengeMethod.DNS:
            for name in domainset:
                record = dns_challenge_record(name)
                dns_records.append(record)
                log("DNS validation of {} requires a TXT record at {}".format(name, record), warning=True)
            if not self.settings.get('dns_provider'):
                raise AcquisitionFailed("no DNS provider configured to publish the TXT records")

        if acme is None:
            raise AcquisitionFailed("no ACME account available")
        try:
            acme.set_challenge_responder(method.challenge_type, self._responder_settings(method))
            if previous is not None and not previous.self_signed and previous.cert_url:
                log("Renewing certificate for {} ({})".format(domainset, method.challenge_type))
                previous_material = CertificateMaterial(domainset.primary, previous.certificate, previous.chain,
                                                        previous.cert_url, previous.cert_stable_url)
                return acme.renew(previous_material, csr)
            log("Obtaining certificate for {} ({})".format(domainset, method.challenge_type))
            return acme.obtain(names, csr)
        except Exception as e:
            raise AcquisitionFailed(e)

    # @brief challenge handler settings for a validation method
    def _responder_settings(self, method):
        settings = dict(self.settings.get('challenge_settings') or {})
        if method == ChallengeMethod.DNS:
            provider = self.settings['dns_provider']
            settings.update(provider)
            settings['mode'] = "dns.{}".format(provider.get('type', 'nsupdate'))
        elif method == ChallengeMethod.STANDALONE:
            settings['mode'] = "tlsalpn"
            settings['port'] = self.settings.get('tls_port', 443)
        elif self.settings.get('webroot'):
            settings['mode'] = "webdir"
            settings['webroot'] = self.settings['webroot']
        else:
            settings['mode'] = "http"
            settings['port'] = self.settings.get('http_port', 80)
        return settings

    def _finalize(self, domainset, key, material):
        try:
            cert = tools.convert_pem_str_to_cert(material.certificate)
        except ValueError as e:
            raise AcquisitionFailed(e, step="Finalize")
        log("Certificate '{}' issued and valid until {}".format(tools.get_cert_cn(cert),
                                                                 tools.get_cert_valid_until(cert)))
        return CertificateRecord(domainset, material.certificate, tools.convert_key_to_pem_bytes(key),
                                 chain=material.issuer, issued_for=tools.get_cert_san(cert), self_signed=False,
                                 cert_url=material.cert_url, cert_stable_url=material.cert_stable_url)

    def _fallback(self, domainset, names, key):
        log("Falling back to a SELF-SIGNED certificate for {} valid for {} days. "
            "This certificate is NOT trusted by clients!".format(domainset, tools.SELF_SIGNED_DAYS), error=True)
        try:
            cert = tools.new_self_signed_cert(names, key)
        except ValueError as e:
            raise PipelineError("Fallback", e)
        return CertificateRecord(domainset, tools.convert_cert_to_pem_str(cert).encode('utf8'),
                                 tools.convert_key_to_pem_bytes(key), chain=None,
                                 issued_for=tools.get_cert_san(cert), self_signed=True)
