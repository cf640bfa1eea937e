#!/usr/bin/env python
# -*- coding: utf-8 -*-

# webserver - web server configurators
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import importlib

from autocert.errors import ConfigurationInvalid
from autocert.tools import log

WEBSERVERS = ("nginx", "apache", "iis")


class ConfiguratorTarget:
    """Everything a configurator needs to enable TLS for a domain set."""

    def __init__(self, server_type, domains, cert_path, key_path, chain_path=None, fullchain_path=None,
                 webroot=None):
        self.server_type = server_type
        # space separated list of all names (usable as nginx server_name)
        self.domains = domains
        self.cert_path = cert_path
        self.key_path = key_path
        self.chain_path = chain_path
        self.fullchain_path = fullchain_path or cert_path
        self.webroot = webroot

    @property
    def primary(self):
        return self.domains.split(" ")[0]


# @brief create the configurator of a web server type
# @param kind one of WEBSERVERS
# @param settings web server specific options (config directories, commands)
def configurator(kind, settings=None):
    if kind not in WEBSERVERS:
        raise ValueError("Unsupported web server: {}".format(kind))
    configurator_module = importlib.import_module("autocert.webserver.{0}".format(kind))
    configurator_class = getattr(configurator_module, "Configurator")
    return configurator_class(settings or {})


# @brief configure, test and reload a web server (a failed test never reloads)
def apply(webserver, target):
    log("Configuring {} for {}".format(target.server_type, target.domains))
    webserver.configure(target)
    try:
        webserver.test()
    except ConfigurationInvalid:
        webserver.revert()
        raise
    webserver.reload()
    log("{} configuration for {} is live".format(target.server_type, target.domains))
