#!/usr/bin/env python
# -*- coding: utf-8 -*-

# abstract - challenge responder base class
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE


class AbstractChallengeHandler:
    """Proves control over a domain for one ACME challenge type.

    The authority calls create -> start -> (validation) -> stop -> destroy
    for every domain of an order; destroy runs in reverse order.
    """

    def __init__(self, config):
        self.config = config

    # @brief ACME challenge type answered (http-01, tls-alpn-01, dns-01)
    @staticmethod
    def get_challenge_type():
        raise NotImplementedError

    # @brief publish the key authorization for token
    def create_challenge(self, domain, thumbprint, token):
        raise NotImplementedError

    # @brief withdraw everything create_challenge published
    def destroy_challenge(self, domain, thumbprint, token):
        raise NotImplementedError

    # @brief the authority is about to validate domain (servers start listening here)
    def start_challenge(self, domain, thumbprint, token):
        pass

    # @brief validation of domain finished
    def stop_challenge(self, domain, thumbprint, token):
        pass

    # @brief key authorization string of RFC8555 section 8.1
    @staticmethod
    def key_authorization(thumbprint, token):
        return "{0}.{1}".format(token, thumbprint)
