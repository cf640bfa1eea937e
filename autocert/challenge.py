#!/usr/bin/env python
# -*- coding: utf-8 -*-

# challenge - validation method selection
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import enum

from autocert.errors import ConflictingChallengeIntent, WildcardRequiresDNS


class ChallengeMethod(enum.Enum):
    WEBROOT = "webroot"
    STANDALONE = "standalone"
    DNS = "dns"

    # ACME challenge type answered for this method
    @property
    def challenge_type(self):
        return {
            ChallengeMethod.WEBROOT: "http-01",
            ChallengeMethod.STANDALONE: "tls-alpn-01",
            ChallengeMethod.DNS: "dns-01",
        }[self]


# @brief select the validation method for a domain set
# @param domainset the requested DomainSet
# @param standalone explicit standalone intent
# @param webroot explicit webroot path (None if not given)
# @param dns explicit dns intent
# @return the ChallengeMethod to use
def select_challenge(domainset, standalone=False, webroot=None, dns=False):
    intents = [name for name, given in (("standalone", standalone), ("webroot", webroot), ("dns", dns)) if given]
    if len(intents) > 1:
        raise ConflictingChallengeIntent("Only one validation method may be given, got: {}".format(", ".join(intents)))

    if dns:
        return ChallengeMethod.DNS
    if domainset.has_wildcard:
        raise WildcardRequiresDNS("Wildcard certificates for {} require DNS validation (--dns)".format(domainset))
    if standalone:
        return ChallengeMethod.STANDALONE
    return ChallengeMethod.WEBROOT
