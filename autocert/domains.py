#!/usr/bin/env python
# -*- coding: utf-8 -*-

# domains - domain set parsing and validation
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

from autocert.errors import InvalidDomainFormat

WILDCARD_PREFIX = "*."
CHALLENGE_RECORD_PREFIX = "_acme-challenge."
SAN_DIR_SUFFIX = "_san"


class DomainSet:
    """Ordered, immutable list of host patterns requested as one certificate.

    Instances are created through parse_domains() which validates every entry.
    """

    def __init__(self, names):
        self._names = tuple(names)

    @property
    def names(self):
        return list(self._names)

    # first entry, used as CSR common name and certificate directory
    @property
    def primary(self):
        return self._names[0]

    @property
    def has_wildcard(self):
        return any(name.startswith(WILDCARD_PREFIX) for name in self._names)

    @property
    def is_multi(self):
        return len(self._names) > 1

    @property
    def dirname(self):
        if self.is_multi:
            return self.primary + SAN_DIR_SUFFIX
        return self.primary

    def __iter__(self):
        return iter(self._names)

    def __len__(self):
        return len(self._names)

    def __eq__(self, other):
        return isinstance(other, DomainSet) and self._names == other._names

    def __hash__(self):
        return hash(self._names)

    def __str__(self):
        return ",".join(self._names)

    def __repr__(self):
        return "DomainSet({!r})".format(list(self._names))


# @brief check a single host pattern
# @raise InvalidDomainFormat if the pattern is not acceptable
def validate_domain(domain):
    if len(domain) == 0:
        raise InvalidDomainFormat("Domain name must not be empty")
    if any(c.isspace() for c in domain):
        raise InvalidDomainFormat("Domain name '{}' must not contain whitespace".format(domain))
    if domain.startswith(WILDCARD_PREFIX):
        base = domain[len(WILDCARD_PREFIX):]
        if len(base) == 0:
            raise InvalidDomainFormat("Wildcard domain '{}' has no base domain".format(domain))
        if "*" in base:
            raise InvalidDomainFormat("Wildcard domain '{}' may only contain one leading wildcard".format(domain))
    elif "*" in domain:
        raise InvalidDomainFormat("Wildcard in '{}' is only allowed as leading '*.' label".format(domain))


# @brief parse domain input into a DomainSet
# @param value comma separated string or list of domain names
# @return the validated DomainSet (duplicates removed, order kept)
def parse_domains(value):
    if isinstance(value, DomainSet):
        return value
    if value is None:
        raise InvalidDomainFormat("No domain given")
    if isinstance(value, str):
        entries = value.split(",")
    else:
        entries = list(value)
    if len(entries) == 0:
        raise InvalidDomainFormat("No domain given")

    names = list()
    for entry in entries:
        entry = entry.strip()
        validate_domain(entry)
        if entry not in names:
            names.append(entry)
    return DomainSet(names)


# @brief name of the TXT record that proves control over domain for dns-01
def dns_challenge_record(domain):
    if domain.startswith(WILDCARD_PREFIX):
        domain = domain[len(WILDCARD_PREFIX):]
    return CHALLENGE_RECORD_PREFIX + domain
