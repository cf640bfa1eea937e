#!/usr/bin/env python
# -*- coding: utf-8 -*-

# autocert - acme api v2 functions (implements RFC8555)
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import copy
import json
import re
import time

from autocert import tools
from autocert.authority import PRODUCTION_AUTHORITY
from autocert.authority.acme import ACMEAuthority as AbstractACMEAuthority, CertificateMaterial
from autocert.modes import challenge_handler
from autocert.tools import log

# Maximum age for nonce values (Boulder invalidates them after some time, so we use a low value of 2 minutes here)
MAX_NONCE_AGE = 120
# Seconds between polls of pending authorizations and orders
POLL_INTERVAL = 5


class ACMEAuthority(AbstractACMEAuthority):
    # @brief Init class with config
    # @param config Configuration data
    # @param key Account key data
    # @param registration account url from a previous registration (optional)
    def __init__(self, config, key, registration=None):
        AbstractACMEAuthority.__init__(self, config, key, registration)
        self.ca = config.get('authority', PRODUCTION_AUTHORITY)
        self.tos_agreed = str(config.get('authority_tos_agreement')).lower() == 'true'
        self.handler = None

        self._directory = None
        self.nonce = None
        self.nonce_time = 0

        self.algorithm, jwk = tools.get_key_alg_and_jwk(key)
        self.account_protected = {
            "alg": self.algorithm,
            "jwk": jwk
        }

    # @brief the authority directory, fetched on first use
    @property
    def directory(self):
        if self._directory is None:
            code, directory, _ = self._request_url(self.ca + '/directory')
            if code >= 400 or not directory:
                directory = {
                    "meta": {},
                    "newAccount": "{}/acme/new-acct".format(self.ca),
                    "newNonce": "{}/acme/new-nonce".format(self.ca),
                    "newOrder": "{}/acme/new-order".format(self.ca),
                }
                log("API directory retrieval failed ({}). Guessed necessary values: {}".format(code, directory),
                    warning=True)
            self._directory = directory
        return self._directory

    # @brief fetch a given url
    def _request_url(self, url, data=None, raw_result=False):
        header = {'Content-Type': 'application/jose+json'}
        if data:
            data = data.encode('utf-8')
        try:
            resp = tools.get_url(url, data, header)
        except IOError as e:
            body = getattr(e, "read", e.__str__)()
            if isinstance(body, bytes):
                body = body.decode('utf-8')
            return getattr(e, "code", 999), body, {}

        # Store next Replay-Nonce if it is in the header
        if 'Replay-Nonce' in resp.headers:
            self.nonce = resp.headers['Replay-Nonce']
            self.nonce_time = time.time()

        body = resp.read().decode('utf-8')
        if not raw_result and len(body) > 0:
            try:
                body = json.loads(body)
            except ValueError as e:
                raise ValueError('Could not parse non-raw result (expected JSON)', e)

        return resp.getcode(), body, resp.headers

    # @brief fetch an url with a signed request
    def _request_acme_url(self, url, payload=None, protected=None, raw_result=False):
        if not protected:
            protected = {}

        if payload is not None:
            payload64 = tools.bytes_to_base64url(json.dumps(payload).encode('utf8'))
        else:
            payload64 = ""  # for POST-as-GET

        # Request a new nonce if there is none in cache
        if not self.nonce or time.time() > self.nonce_time + MAX_NONCE_AGE:
            self._request_url(self.directory['newNonce'])
        protected["nonce"] = self.nonce
        self.nonce = None

        protected["url"] = url
        protected["alg"] = self.algorithm
        if self.registration and "jwk" not in protected:
            protected["kid"] = self.registration
        protected64 = tools.bytes_to_base64url(json.dumps(protected).encode('utf8'))
        out = tools.signature_of_str(self.key, '.'.join([protected64, payload64]))
        data = json.dumps({
            "protected": protected64,
            "payload": payload64,
            "signature": tools.bytes_to_base64url(out),
        })
        return self._request_url(url, data, raw_result)

    # @brief send a signed request to an endpoint of the directory
    def _request_acme_endpoint(self, request, payload=None, protected=None, raw_result=False):
        return self._request_acme_url(self.directory[request], payload, protected, raw_result)

    # @brief register an account over ACME (returns the existing account if the key is already known)
    def register(self, email):
        protected = copy.deepcopy(self.account_protected)
        payload = {
            "termsOfServiceAgreed": self.tos_agreed,
            "onlyReturnExisting": False,
        }
        if email:
            payload["contact"] = ["mailto:{}".format(email)]
        code, result, headers = self._request_acme_endpoint("newAccount", payload, protected)
        if code < 400 and result.get('status') == 'valid':
            self.registration = headers['Location']
            if 'termsOfService' in self.directory.get('meta', {}):
                log("ToS at {} have been accepted.".format(self.directory['meta']['termsOfService']))
            log("Account {} registered and valid on {}.".format(email, self.ca))
            return self.registration
        raise ValueError("Error registering account: {0} {1}".format(code, result))

    def set_challenge_responder(self, challenge_type, settings):
        handler = challenge_handler(settings)
        if handler.get_challenge_type() != challenge_type:
            raise ValueError("Challenge handler {} does not answer {} challenges".format(
                settings.get('mode'), challenge_type))
        self.handler = handler

    # @brief function to fetch certificate using ACME
    # @note algorithm and parts of the code are from acme-tiny
    def obtain(self, domains, csr):
        if not self.registration:
            raise ValueError("No registered account available for {}".format(self.ca))
        if self.handler is None:
            raise ValueError("No challenge responder configured")

        account_thumbprint = tools.bytes_to_base64url(
            tools.hash_of_str(json.dumps(self.account_protected['jwk'], sort_keys=True, separators=(',', ':'))))
        ctype = self.handler.get_challenge_type()

        log("Ordering certificate for {}".format(domains))
        identifiers = [{'type': 'dns', 'value': domain} for domain in domains]
        code, order, headers = self._request_acme_endpoint('newOrder', {'identifiers': identifiers})
        if code >= 400:
            raise ValueError("Error with certificate order: {0} {1}".format(code, order))
        order_url = headers['Location']

        authorizations = list()
        try:
            for authorization_url in order['authorizations']:
                code, authorization, _ = self._request_acme_url(authorization_url)
                if code >= 400:
                    raise ValueError("Error requesting authorization: {0} {1}".format(code, authorization))

                domain = authorization['identifier']['value']
                label = "*.{}".format(domain) if authorization.get('wildcard') else domain
                if authorization.get('status') == 'valid':
                    log("{} has already been authorized".format(label))
                    continue

                matching_challenges = [c for c in authorization['challenges'] if c['type'] == ctype]
                if len(matching_challenges) == 0:
                    raise ValueError("Error no challenge matching {0} found: {1}".format(ctype, authorization))
                challenge = matching_challenges[0]
                if challenge.get('status') == 'valid':
                    log("{} has already been authorized using {}".format(label, ctype))
                    continue

                token = re.sub(r"[^A-Za-z0-9_\-]", "_", challenge['token'])
                log("Authorizing {0}".format(label))
                self.handler.create_challenge(domain, account_thumbprint, token)
                authorizations.append((label, domain, challenge, token))

            # after all challenges are created, start processing authorizations
            for label, domain, challenge, token in authorizations:
                try:
                    log("Starting verification of {}".format(label))
                    self.handler.start_challenge(domain, account_thumbprint, token)
                    code, challenge_status, _ = self._request_acme_url(challenge['url'], {})
                    while code < 400 and challenge_status.get('status') in ("pending", "processing"):
                        time.sleep(POLL_INTERVAL)
                        code, challenge_status, _ = self._request_acme_url(challenge['url'])

                    if code < 400 and challenge_status.get('status') == "valid":
                        log("{0} verified".format(label))
                    else:
                        raise ValueError("{0} challenge did not pass ({1}): {2}".format(label, code, challenge_status))
                finally:
                    self.handler.stop_challenge(domain, account_thumbprint, token)
        finally:
            # Destroy challenges in reverse order to replay any saved state information in the handler correctly
            for label, domain, challenge, token in reversed(authorizations):
                try:
                    self.handler.destroy_challenge(domain, account_thumbprint, token)
                except Exception as e:
                    log('Challenge destruction for {} failed: {}'.format(label, e), error=True)

        # check order status and retry once
        code, order, _ = self._request_acme_url(order_url)
        if code < 400 and order.get('status') == 'pending':
            time.sleep(POLL_INTERVAL)
            code, order, _ = self._request_acme_url(order_url)
        if code >= 400:
            raise ValueError("Order is still not ready to be finalized: {0} {1}".format(code, order))

        log("Finalizing certificate")
        code, finalize, _ = self._request_acme_url(order['finalize'], {
            "csr": tools.bytes_to_base64url(tools.convert_cert_to_der_bytes(csr)),
        })
        while code < 400 and finalize.get('status') in ('pending', 'processing'):
            time.sleep(POLL_INTERVAL)
            code, finalize, _ = self._request_acme_url(order_url)
        if code >= 400 or finalize.get('status') != 'valid':
            raise ValueError("Error finalizing certificate: {0} {1}".format(code, finalize))
        log("Certificate ready!")

        cert_url = finalize['certificate']
        code, certificate, _ = self._request_acme_url(cert_url, raw_result=True)
        if code >= 400:
            raise ValueError("Error downloading certificate chain: {0} {1}".format(code, certificate))

        cert_pem, chain_pem = tools.split_pem_chain(certificate)
        if chain_pem is None:
            issuer = tools.download_issuer_ca(tools.convert_pem_str_to_cert(cert_pem))
            if issuer is not None:
                chain_pem = tools.convert_cert_to_pem_str(issuer)

        return CertificateMaterial(domains[0], cert_pem.encode('utf8'),
                                   chain_pem.encode('utf8') if chain_pem else None,
                                   cert_url=cert_url, cert_stable_url=cert_url)

    def renew(self, material, csr):
        domains = tools.get_cert_san(tools.convert_pem_str_to_cert(material.certificate))
        if len(domains) == 0:
            domains = [material.domain]
        return self.obtain(domains, csr)
