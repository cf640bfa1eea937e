#!/usr/bin/env python
# -*- coding: utf-8 -*-

# store - on-disk certificate storage
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import contextlib
import io
import json
import math
import os

from autocert import tools
from autocert.domains import parse_domains, SAN_DIR_SUFFIX
from autocert.errors import CertificateNotFound, InvalidDomainFormat, StoreError
from autocert.tools import log

# Certificates expiring in this many days (or less) are renewed
RENEWAL_DAYS = 30

CERT_FILE = "cert.pem"
KEY_FILE = "key.pem"
CHAIN_FILE = "chain.pem"
FULLCHAIN_FILE = "fullchain.pem"
META_FILE = "cert.json"
DOMAINS_FILE = "domains.txt"
LOCK_FILE = ".lock"


class CertificateRecord:
    """A complete certificate as written by CertificateStore.save()."""

    def __init__(self, domains, certificate, key, chain=None, issued_for=None, self_signed=False,
                 cert_url=None, cert_stable_url=None, settings=None):
        self.domains = domains
        self.certificate = certificate
        self.key = key
        self.chain = chain
        self.issued_for = issued_for if issued_for is not None else domains.names
        self.self_signed = self_signed
        self.cert_url = cert_url
        self.cert_stable_url = cert_stable_url
        # options needed to renew this certificate later on (email, challenge, webroot, webserver)
        self.settings = settings or {}

    @property
    def expiry(self):
        return tools.get_cert_valid_until(tools.convert_pem_str_to_cert(self.certificate))


class CertificateStatus:
    def __init__(self, domain, domains, cert_path, key_path, chain_path, expiry_date, is_valid, days_left,
                 self_signed=False):
        self.domain = domain
        self.domains = domains
        self.cert_path = cert_path
        self.key_path = key_path
        self.chain_path = chain_path
        self.expiry_date = expiry_date
        self.is_valid = is_valid
        self.days_left = days_left
        self.self_signed = self_signed


# @brief whether a certificate is due for renewal
def needs_renewal(status):
    return status.days_left <= RENEWAL_DAYS


# @brief days until expiry, floor(hours_until_not_after / 24)
def days_until(expiry, now=None):
    if now is None:
        now = tools.utcnow()
    return int(math.floor((expiry - now).total_seconds() / 86400))


class CertificateStore:
    def __init__(self, cert_dir):
        self.cert_dir = cert_dir

    def directory(self, domainset):
        return os.path.join(self.cert_dir, domainset.dirname)

    def cert_path(self, domainset):
        return os.path.join(self.directory(domainset), CERT_FILE)

    def key_path(self, domainset):
        return os.path.join(self.directory(domainset), KEY_FILE)

    def chain_path(self, domainset):
        return os.path.join(self.directory(domainset), CHAIN_FILE)

    def fullchain_path(self, domainset):
        return os.path.join(self.directory(domainset), FULLCHAIN_FILE)

    def meta_path(self, domainset):
        return os.path.join(self.directory(domainset), META_FILE)

    # @brief create the certificate directory of a domain set
    def create_directory(self, domainset):
        try:
            os.makedirs(self.directory(domainset), mode=0o755, exist_ok=True)
        except OSError as e:
            raise StoreError("Could not create certificate directory {}: {}".format(self.directory(domainset), e))

    # @brief serialize all writers of one certificate directory
    @contextlib.contextmanager
    def lock(self, domainset):
        self.create_directory(domainset)
        with tools.file_lock(os.path.join(self.directory(domainset), LOCK_FILE)):
            yield

    # @brief write a private key for the domain set (owner read/write only)
    def write_key(self, domainset, key_pem):
        try:
            tools.write_file(self.key_path(domainset), key_pem, 0o600)
        except OSError as e:
            raise StoreError("Could not write key file {}: {}".format(self.key_path(domainset), e))

    # @brief persist a complete certificate record, every file is replaced atomically
    def save(self, record):
        domainset = record.domains
        self.create_directory(domainset)
        certificate = record.certificate
        chain = record.chain
        try:
            tools.write_file(self.cert_path(domainset), certificate)
            self.write_key(domainset, record.key)
            if chain:
                tools.write_file(self.chain_path(domainset), chain)
            elif os.path.exists(self.chain_path(domainset)):
                os.remove(self.chain_path(domainset))
            tools.write_file(self.fullchain_path(domainset), certificate + (chain or b""))
            if domainset.is_multi:
                tools.write_file(os.path.join(self.directory(domainset), DOMAINS_FILE), "\n".join(domainset))
        except OSError as e:
            raise StoreError("Could not write certificate files for {}: {}".format(domainset, e))

        meta = {
            'domain': domainset.primary,
            'domains': domainset.names,
            'issuedFor': record.issued_for,
            'certURL': record.cert_url,
            'certStableURL': record.cert_stable_url,
            'selfSigned': record.self_signed,
        }
        meta.update(record.settings)
        try:
            tools.write_file(self.meta_path(domainset), json.dumps(meta, indent=2))
        except OSError as e:
            log("Could not write certificate metadata {}".format(self.meta_path(domainset)), e, warning=True)
        log("Stored certificate for {} in {}".format(domainset, self.directory(domainset)))

    # @brief read the metadata sidecar of a domain set (empty dict if missing or unreadable)
    def metadata(self, domainset):
        try:
            with io.open(self.meta_path(domainset)) as meta_fd:
                return json.load(meta_fd)
        except (IOError, ValueError):
            return {}

    # @brief load the stored record of a domain set
    def load(self, domainset):
        if not os.path.isfile(self.cert_path(domainset)):
            raise CertificateNotFound("No certificate found at {}".format(self.cert_path(domainset)))
        meta = self.metadata(domainset)
        try:
            with io.open(self.cert_path(domainset), 'rb') as cert_fd:
                certificate = cert_fd.read()
            with io.open(self.key_path(domainset), 'rb') as key_fd:
                key = key_fd.read()
            chain = None
            if os.path.isfile(self.chain_path(domainset)):
                with io.open(self.chain_path(domainset), 'rb') as chain_fd:
                    chain = chain_fd.read()
        except IOError as e:
            raise StoreError("Incomplete certificate directory {}: {}".format(self.directory(domainset), e))
        settings = {k: v for k, v in meta.items() if k in ('email', 'challenge', 'webroot', 'webserver')}
        return CertificateRecord(domainset, certificate, key, chain, meta.get('issuedFor'),
                                 meta.get('selfSigned', False), meta.get('certURL'), meta.get('certStableURL'),
                                 settings)

    # @brief inspect the stored certificate of a domain set
    # @return CertificateStatus
    def info(self, domainset):
        cert_path = self.cert_path(domainset)
        if not os.path.isfile(cert_path):
            raise CertificateNotFound("No certificate found at {}".format(cert_path))
        try:
            cert = tools.read_pem_file(cert_path)
        except ValueError as e:
            raise StoreError("Unreadable certificate {}: {}".format(cert_path, e))
        expiry = tools.get_cert_valid_until(cert)
        now = tools.utcnow()
        meta = self.metadata(domainset)
        return CertificateStatus(
            domain=domainset.primary,
            domains=tools.get_cert_san(cert),
            cert_path=cert_path,
            key_path=self.key_path(domainset),
            chain_path=self.chain_path(domainset),
            expiry_date=expiry,
            is_valid=now < expiry,
            days_left=days_until(expiry, now),
            self_signed=meta.get('selfSigned', tools.is_self_signed(cert)),
        )

    # @brief find the stored domain set for a single domain (plain or SAN directory)
    def lookup(self, value):
        domainset = parse_domains(value)
        if domainset.is_multi or os.path.isfile(self.cert_path(domainset)):
            return domainset
        san_dir = os.path.join(self.cert_dir, domainset.primary + SAN_DIR_SUFFIX)
        if os.path.isdir(san_dir):
            return self._domainset_of(san_dir) or domainset
        return domainset

    # @brief determine the domain set stored in a certificate directory
    def _domainset_of(self, directory):
        names = None
        try:
            with io.open(os.path.join(directory, META_FILE)) as meta_fd:
                names = json.load(meta_fd).get('domains')
        except (IOError, ValueError):
            pass
        if not names and os.path.isfile(os.path.join(directory, DOMAINS_FILE)):
            with io.open(os.path.join(directory, DOMAINS_FILE)) as domains_fd:
                names = [line for line in domains_fd.read().splitlines() if line.strip()]
        if not names:
            names = [os.path.basename(directory)]
        try:
            return parse_domains(names)
        except InvalidDomainFormat as e:
            log("Ignoring certificate directory {}: {}".format(directory, e), warning=True)
            return None

    # @brief list every stored domain set
    def list(self):
        result = list()
        if not os.path.isdir(self.cert_dir):
            return result
        for name in sorted(os.listdir(self.cert_dir)):
            directory = os.path.join(self.cert_dir, name)
            if os.path.isfile(os.path.join(directory, CERT_FILE)):
                domainset = self._domainset_of(directory)
                if domainset is not None:
                    result.append(domainset)
        return result
