#!/usr/bin/env python
# -*- coding: utf-8 -*-

# autocert - various support functions
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import base64
import contextlib
import datetime
import io
import os
import re
import sys
import tempfile
import traceback

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa, ec, padding
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.utils import int_to_bytes
from cryptography.x509.oid import AuthorityInformationAccessOID, ExtendedKeyUsageOID, ExtensionOID, NameOID

try:
    import fcntl
except ImportError:
    # Warnings will be reported upon usage below
    pass

from urllib.request import urlopen, Request

# Validity of locally synthesized (fallback) certificates
SELF_SIGNED_DAYS = 90

# Print debug messages (enabled by --verbose)
DEBUG = False

PEM_CERT_REGEX = re.compile(r'-----BEGIN CERTIFICATE-----.+?-----END CERTIFICATE-----', re.DOTALL)


# @brief a simple, portable indent function
def indent(text, spaces=0):
    ind = ' ' * spaces
    return os.linesep.join(ind + line for line in text.splitlines())


# @brief wrapper for log output
def log(msg, exc=None, error=False, warning=False, debug=False):
    if debug and not DEBUG:
        return

    if error:
        prefix = "Error: "
    elif warning:
        prefix = "Warning: "
    elif debug:
        prefix = "Debug: "
    else:
        prefix = ""

    output = prefix + msg
    if exc:
        formatted_exc = traceback.format_exception(type(exc), exc, exc.__traceback__)
        output += os.linesep + indent(''.join(formatted_exc), len(prefix))

    if error or warning:
        sys.stderr.write(output + os.linesep)
        sys.stderr.flush()  # force flush buffers after message was written for immediate display
    else:
        sys.stdout.write(output + os.linesep)
        sys.stdout.flush()  # force flush buffers after message was written for immediate display


# @brief wrapper for downloading an url
def get_url(url, data=None, headers=None):
    return urlopen(Request(url, data=data, headers={} if headers is None else headers))


# @brief current time as timezone aware UTC datetime
def utcnow():
    return datetime.datetime.now(datetime.timezone.utc)


# @brief write data to a file atomically (write to a temporary file, then rename)
# @param path target file path
# @param data bytes or str to write
# @param perms file permissions of the resulting file
def write_file(path, data, perms=0o644):
    if isinstance(data, str):
        data = data.encode('utf-8')
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.{}.'.format(os.path.basename(path)), suffix='.tmp')
    try:
        with io.open(fd, 'wb') as tmp_file:
            tmp_file.write(data)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())
        if hasattr(os, 'chmod'):
            os.chmod(tmp_path, perms)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


# @brief write data to a file that must not exist yet (write to a temporary file, then hard link)
# @raise FileExistsError if path already exists, its contents are left untouched
def write_new_file(path, data, perms=0o600):
    if isinstance(data, str):
        data = data.encode('utf-8')
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.{}.'.format(os.path.basename(path)), suffix='.tmp')
    try:
        with io.open(fd, 'wb') as tmp_file:
            tmp_file.write(data)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())
        os.chmod(tmp_path, perms)
        os.link(tmp_path, path)
    finally:
        os.unlink(tmp_path)


# @brief hold an exclusive lock on the given lock file while the context is active
@contextlib.contextmanager
def file_lock(path):
    with io.open(path, 'a+') as lock_fd:
        locked = False
        if 'fcntl' in sys.modules:
            fcntl.flock(lock_fd.fileno(), fcntl.LOCK_EX)
            locked = True
        else:
            log('File locking unavailable on this platform', warning=True)
        try:
            yield
        finally:
            if locked:
                fcntl.flock(lock_fd.fileno(), fcntl.LOCK_UN)


# @brief create a certificate signing request
# @param names list of domain names the certificate should be valid for
# @param key the key to use with the certificate
# @return the CSR
def new_cert_request(names, key):
    primary_name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, names[0])])
    all_names = x509.SubjectAlternativeName([x509.DNSName(name) for name in names])
    req = x509.CertificateSigningRequestBuilder()
    req = req.subject_name(primary_name)
    req = req.add_extension(all_names, critical=False)
    return req.sign(key, hashes.SHA256())


# @brief create a self-signed certificate (fallback if no authority could issue one)
# @param names list of domain names the certificate should be valid for, first is CN
# @param key the key to sign and embed in the certificate
# @param days validity of the certificate
def new_self_signed_cert(names, key, days=SELF_SIGNED_DAYS):
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, names[0])])
    now = utcnow()
    builder = x509.CertificateBuilder()
    builder = builder.subject_name(subject).issuer_name(subject)
    builder = builder.public_key(key.public_key())
    builder = builder.serial_number(x509.random_serial_number())
    builder = builder.not_valid_before(now)
    builder = builder.not_valid_after(now + datetime.timedelta(days=days))
    builder = builder.add_extension(x509.SubjectAlternativeName([x509.DNSName(name) for name in names]),
                                    critical=False)
    builder = builder.add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
    builder = builder.add_extension(x509.KeyUsage(digital_signature=True, content_commitment=False,
                                                  key_encipherment=isinstance(key, rsa.RSAPrivateKey),
                                                  data_encipherment=False, key_agreement=False,
                                                  key_cert_sign=False, crl_sign=False,
                                                  encipher_only=False, decipher_only=False), critical=True)
    builder = builder.add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
    return builder.sign(key, hashes.SHA256())


# @brief generate a new account key
# @param path path where the new key file should be written in PEM format (optional)
def new_account_key(path=None, key_algo='ec', key_size=None):
    return new_ssl_key(path, key_algo, key_size)


# @brief generate a new ssl key
# @param path path where the new key file should be written in PEM format (optional)
def new_ssl_key(path=None, key_algo=None, key_size=None):
    if not key_algo or key_algo.lower() == 'rsa':
        if not key_size:
            key_size = 2048
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    elif key_algo.lower() == 'ec':
        if not key_size or key_size == 256:
            key_curve = ec.SECP256R1
        elif key_size == 384:
            key_curve = ec.SECP384R1
        elif key_size == 521:
            key_curve = ec.SECP521R1
        else:
            raise ValueError("Unsupported EC curve size parameter: {}".format(key_size))
        private_key = ec.generate_private_key(curve=key_curve())
    else:
        raise ValueError("Unsupported key algorithm: {}".format(key_algo))
    if path is not None:
        write_file(path, convert_key_to_pem_bytes(private_key), 0o600)
    return private_key


# @brief serialize a private key to unencrypted PEM
def convert_key_to_pem_bytes(key):
    if isinstance(key, rsa.RSAPrivateKey):
        key_format = serialization.PrivateFormat.TraditionalOpenSSL
    else:
        key_format = serialization.PrivateFormat.PKCS8
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=key_format,
        encryption_algorithm=serialization.NoEncryption(),
    )


# @brief read a key from file
# @param path path to file
# @param key indicate whether we are loading a key
# @param csr indicate whether we are loading a csr
def read_pem_file(path, key=False, csr=False):
    with io.open(path, 'rb') as f:
        if key:
            return serialization.load_pem_private_key(f.read(), None)
        elif csr:
            return x509.load_pem_x509_csr(f.read())
        else:
            return x509.load_pem_x509_certificate(f.read())


# @brief split a PEM bundle into the leaf certificate and the remaining chain
# @return tuple of (leaf PEM str, chain PEM str or None)
def split_pem_chain(pemdata):
    if isinstance(pemdata, bytes):
        pemdata = pemdata.decode('utf8')
    blocks = PEM_CERT_REGEX.findall(pemdata)
    if len(blocks) == 0:
        raise ValueError("No PEM certificate found in data")
    chain = '\n'.join(blocks[1:]) + '\n' if len(blocks) > 1 else None
    return blocks[0] + '\n', chain


# @brief download the issuer ca for a given certificate
# @param cert certificate data
# @returns ca certificate data
def download_issuer_ca(cert):
    aia = cert.extensions.get_extension_for_oid(ExtensionOID.AUTHORITY_INFORMATION_ACCESS)
    ca_issuers = None
    for data in aia.value:
        if data.access_method == AuthorityInformationAccessOID.CA_ISSUERS:
            ca_issuers = data.access_location.value
            break

    if not ca_issuers:
        log("Could not determine issuer CA for given certificate: {}".format(cert), error=True)
        return None

    log("Downloading CA certificate from {}".format(ca_issuers))
    resp = get_url(ca_issuers)
    code = resp.getcode()
    if code >= 400:
        log("Could not download issuer CA (error {}) for given certificate: {}".format(code, cert), error=True)
        return None

    return x509.load_der_x509_certificate(resp.read())


# @brief determine the subject alternative names of a certificate in their stored order
def get_cert_san(cert):
    try:
        san = cert.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
    except x509.ExtensionNotFound:
        return []
    return san.value.get_values_for_type(x509.DNSName)


# @brief determine certificate cn
def get_cert_cn(cert):
    return "CN={}".format(cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value)


# @brief determine certificate end of validity
def get_cert_valid_until(cert):
    return cert.not_valid_after_utc


# @brief check whether a certificate was signed by itself
def is_self_signed(cert):
    return cert.issuer == cert.subject


# @brief convert certificate to PEM format
def convert_cert_to_pem_str(cert):
    return cert.public_bytes(serialization.Encoding.PEM).decode('utf8')


# @brief load a PEM certificate from str
def convert_pem_str_to_cert(certdata):
    if isinstance(certdata, str):
        certdata = certdata.encode('utf8')
    return x509.load_pem_x509_certificate(certdata)


# @brief serialize cert/csr to DER bytes
def convert_cert_to_der_bytes(data):
    return data.public_bytes(serialization.Encoding.DER)


# @brief determine key signing algorithm and jwk data
# @return key algorithm, signature algorithm, key numbers as a dict
def get_key_alg_and_jwk(key):
    if isinstance(key, rsa.RSAPrivateKey):
        # See https://tools.ietf.org/html/rfc7518#section-6.3
        numbers = key.public_key().public_numbers()
        return "RS256", {"kty": "RSA",
                         "e": bytes_to_base64url(int_to_bytes(numbers.e)),
                         "n": bytes_to_base64url(int_to_bytes(numbers.n))}
    elif isinstance(key, ec.EllipticCurvePrivateKey):
        # See https://tools.ietf.org/html/rfc7518#section-6.2
        numbers = key.public_key().public_numbers()
        curves = {'secp256r1': ('ES256', 'P-256'), 'secp384r1': ('ES384', 'P-384'), 'secp521r1': ('ES512', 'P-521')}
        if key.curve.name not in curves:
            raise ValueError("Unsupported EC curve in key: {}".format(key))
        alg, crv = curves[key.curve.name]
        full_octets = (int(crv[2:]) + 7) // 8
        return alg, {"kty": "EC", "crv": crv,
                     "x": bytes_to_base64url(int_to_bytes(numbers.x, full_octets)),
                     "y": bytes_to_base64url(int_to_bytes(numbers.y, full_octets))}
    else:
        raise ValueError("Unsupported key: {}".format(key))


# @brief sign string with key
def signature_of_str(key, string):
    alg, _ = get_key_alg_and_jwk(key)
    data = string.encode('utf8')
    if alg == 'RS256':
        return key.sign(data, padding.PKCS1v15(), hashes.SHA256())
    full_octets = (int(alg[2:]) + 7) // 8
    digest = {'ES256': hashes.SHA256, 'ES384': hashes.SHA384, 'ES512': hashes.SHA512}[alg]
    der_sig = key.sign(data, ec.ECDSA(digest()))
    # convert DER signature to RAW format (https://tools.ietf.org/html/rfc7518#section-3.4)
    r, s = decode_dss_signature(der_sig)
    return int_to_bytes(r, full_octets) + int_to_bytes(s, full_octets)


# @brief hash a string
def hash_of_str(string):
    digest = hashes.Hash(hashes.SHA256())
    digest.update(string.encode('utf8'))
    return digest.finalize()


# @brief helper function to base64 encode for JSON objects
# @param b the byte-string to encode
# @return the encoded string
def bytes_to_base64url(b):
    return base64.urlsafe_b64encode(b).decode('utf8').replace("=", "")


# @brief convert domain list to idna representation (if applicable)
# @return list of (idna name, original name) tuples
def idna_convert(domainlist):
    if any(ord(c) >= 128 for c in ''.join(domainlist)):
        try:
            domaintranslation = list()
            for domain in domainlist:
                if any(ord(c) >= 128 for c in domain):
                    # Translate IDNA domain name from a unicode domain (handle wildcards separately)
                    if domain.startswith('*.'):
                        idna_domain = "*.{}".format(domain[2:].encode('idna').decode('ascii'))
                    else:
                        idna_domain = domain.encode('idna').decode('ascii')
                    result = idna_domain, domain
                else:
                    result = domain, domain
                domaintranslation.append(result)
            return domaintranslation
        except UnicodeError as e:
            log("Unicode domain(s) found but IDNA names could not be translated due to error: {}".format(e), error=True)
    return [(x, x) for x in domainlist]
