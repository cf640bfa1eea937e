#!/usr/bin/env python
# -*- coding: utf-8 -*-

# authority - authority api package
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import importlib

DEFAULT_API = "v2"
PRODUCTION_AUTHORITY = "https://acme-v02.api.letsencrypt.org"
STAGING_AUTHORITY = "https://acme-staging-v02.api.letsencrypt.org"


# @brief create an authority for the given settings bound to an account
# @param settings the authority configuration options
# @param account the Account whose key signs the requests
def authority(settings, account):
    authority_module = importlib.import_module("autocert.authority.{0}".format(settings.get("api", DEFAULT_API)))
    authority_class = getattr(authority_module, "ACMEAuthority")
    return authority_class(settings, account.key, account.registration)
