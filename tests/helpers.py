# -*- coding: utf-8 -*-

# helpers - shared fixtures for the autocert tests
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import datetime

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from autocert import tools
from autocert.authority.acme import ACMEAuthority, CertificateMaterial
from autocert.domains import parse_domains
from autocert.store import CertificateRecord

TEST_SETTINGS = {
    'key_algorithm': 'ec',
    'key_size': None,
    'account_key_algorithm': 'ec',
    'authority': {},
}


class IssuingCA:
    """Minimal issuing CA used in place of a real ACME authority."""

    def __init__(self):
        self.key = ec.generate_private_key(ec.SECP256R1())
        self.name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "autocert test CA")])
        now = tools.utcnow()
        self.cert = x509.CertificateBuilder() \
            .subject_name(self.name).issuer_name(self.name) \
            .public_key(self.key.public_key()) \
            .serial_number(x509.random_serial_number()) \
            .not_valid_before(now - datetime.timedelta(days=1)) \
            .not_valid_after(now + datetime.timedelta(days=365)) \
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True) \
            .sign(self.key, hashes.SHA256())

    def sign(self, names, public_key, days=90):
        now = tools.utcnow()
        return x509.CertificateBuilder() \
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, names[0])])) \
            .issuer_name(self.name) \
            .public_key(public_key) \
            .serial_number(x509.random_serial_number()) \
            .not_valid_before(now - datetime.timedelta(hours=1)) \
            .not_valid_after(now + datetime.timedelta(days=days)) \
            .add_extension(x509.SubjectAlternativeName([x509.DNSName(name) for name in names]), critical=False) \
            .sign(self.key, hashes.SHA256())

    @property
    def pem(self):
        return tools.convert_cert_to_pem_str(self.cert).encode('utf8')


class FakeAuthority(ACMEAuthority):
    """ACME authority issuing from an IssuingCA, optionally failing on register or obtain."""

    def __init__(self, ca=None, registration="https://acme.test/acct/1", register_error=None, obtain_error=None):
        ACMEAuthority.__init__(self, {}, None)
        self.ca = ca or IssuingCA()
        self.registration_url = registration
        self.register_error = register_error
        self.obtain_error = obtain_error
        self.registered = []
        self.responders = []
        self.obtained = []
        self.renewed = []

    def register(self, email):
        self.registered.append(email)
        if self.register_error is not None:
            raise self.register_error
        return self.registration_url

    def set_challenge_responder(self, challenge_type, settings):
        self.responders.append((challenge_type, settings))

    def obtain(self, domains, csr):
        self.obtained.append(list(domains))
        if self.obtain_error is not None:
            raise self.obtain_error
        cert = self.ca.sign(list(domains), csr.public_key())
        return CertificateMaterial(domains[0], tools.convert_cert_to_pem_str(cert).encode('utf8'), self.ca.pem,
                                   cert_url="https://acme.test/cert/{}".format(len(self.obtained)),
                                   cert_stable_url="https://acme.test/cert/{}".format(len(self.obtained)))

    def renew(self, material, csr):
        self.renewed.append(material)
        return self.obtain(tools.get_cert_san(tools.convert_pem_str_to_cert(material.certificate)), csr)


# @brief a stored record whose certificate expires in the given number of days
def make_record(domains, days, self_signed=False, settings=None, ca=None):
    domainset = parse_domains(domains)
    key = ec.generate_private_key(ec.SECP256R1())
    names = domainset.names
    if self_signed:
        cert = tools.new_self_signed_cert(names, key, days=days)
        chain = None
        cert_url = None
    else:
        ca = ca or IssuingCA()
        cert = ca.sign(names, key.public_key(), days=days)
        chain = ca.pem
        cert_url = "https://acme.test/cert/old"
    return CertificateRecord(domainset, tools.convert_cert_to_pem_str(cert).encode('utf8'),
                             tools.convert_key_to_pem_bytes(key), chain=chain, self_signed=self_signed,
                             cert_url=cert_url, cert_stable_url=cert_url, settings=settings)
