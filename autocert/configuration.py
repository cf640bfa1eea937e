#!/usr/bin/env python
# -*- coding: utf-8 -*-

# config - autocert command line and config file parser
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import argparse
import io
import json
import os

from autocert.authority import DEFAULT_API, PRODUCTION_AUTHORITY, STAGING_AUTHORITY
from autocert.scheduler import DEFAULT_SCHEDULE, DEFAULT_TASK_NAME
from autocert.webserver import WEBSERVERS

# Configuration defaults to use if not specified otherwise
DEFAULT_CONF_DIR = "/etc/autocert"
DEFAULT_CONF_FILENAME = "autocert.conf"
DEFAULT_CERT_SUBDIR = "certs"
DEFAULT_KEY_ALGORITHM = "rsa"
DEFAULT_ACCOUNT_KEY_ALGORITHM = "ec"
DEFAULT_HTTP_PORT = 80
DEFAULT_TLS_PORT = 443


# @brief update config[name] with value from commandline>globalconfig>default
def update_config_value(config, name, value, globalconfig, default):
    if value is not None:
        config[name] = value
    else:
        config[name] = globalconfig.get(name, default)


# @brief convert an optional value to int
def _int_or_none(value):
    return int(value) if value not in (None, "") else None


# @brief parse authority from config
def parse_authority(args, globalconfig):
    authority = {}
    # - API version
    update_config_value(authority, 'api', None, globalconfig, DEFAULT_API)

    # - Certificate authority (--staging wins over the configured authority)
    update_config_value(authority, 'authority', STAGING_AUTHORITY if args.staging else None, globalconfig,
                        PRODUCTION_AUTHORITY)

    # - Certificate authority ToS agreement
    update_config_value(authority, 'authority_tos_agreement', args.tos_agreement, globalconfig, None)

    return authority


# @brief load the global configuration file (json, yaml as fallback)
def load_config_file(path):
    globalconfig = dict()
    if os.path.isfile(path):
        with io.open(path) as config_fd:
            try:
                globalconfig = json.load(config_fd)
            except ValueError:
                import yaml
                config_fd.seek(0)
                globalconfig = yaml.safe_load(config_fd) or dict()
    if not isinstance(globalconfig, dict):
        raise ValueError("Configuration file {} must contain a mapping".format(path))
    return globalconfig


# @brief the settings used by the lifecycle manager
# @param args the parsed command line
# @param globalconfig the content of the global configuration file
# @return settings dict
def parse_settings(args, globalconfig):
    settings = dict()
    settings['config_dir'] = args.config_dir or DEFAULT_CONF_DIR

    # Certificate directory
    update_config_value(settings, 'cert_dir', args.cert_dir, globalconfig,
                        os.path.join(settings['config_dir'], DEFAULT_CERT_SUBDIR))

    # Default account contact
    update_config_value(settings, 'email', None, globalconfig, None)

    # Authority related config options
    settings['authority'] = parse_authority(args, globalconfig)

    # Certificate key algorithm and length
    update_config_value(settings, 'key_algorithm', getattr(args, 'key_algorithm', None), globalconfig,
                        DEFAULT_KEY_ALGORITHM)
    update_config_value(settings, 'key_size', getattr(args, 'key_size', None), globalconfig, None)
    settings['key_size'] = _int_or_none(settings['key_size'])

    # Account key algorithm and length (if key has to be generated)
    update_config_value(settings, 'account_key_algorithm', None, globalconfig, DEFAULT_ACCOUNT_KEY_ALGORITHM)
    update_config_value(settings, 'account_key_size', None, globalconfig, None)
    settings['account_key_size'] = _int_or_none(settings['account_key_size'])

    # Built-in challenge server ports
    update_config_value(settings, 'http_port', getattr(args, 'http_port', None), globalconfig, DEFAULT_HTTP_PORT)
    update_config_value(settings, 'tls_port', getattr(args, 'tls_port', None), globalconfig, DEFAULT_TLS_PORT)
    settings['http_port'] = int(settings['http_port'])
    settings['tls_port'] = int(settings['tls_port'])

    # Generic challenge handler options (bind_address, http_verify, dns_ttl, ...)
    update_config_value(settings, 'challenge_settings', None, globalconfig, {})

    # DNS provider publishing _acme-challenge records, e.g. {"type": "nsupdate", "nsupdate_server": ...}
    update_config_value(settings, 'dns_provider', None, globalconfig, None)
    if settings['dns_provider'] is not None and not isinstance(settings['dns_provider'], dict):
        raise ValueError("dns_provider must be a mapping with at least a 'type' entry")

    # Web server specific options, e.g. {"nginx": {"conf_dir": ...}}
    update_config_value(settings, 'webservers', None, globalconfig, {})

    return settings


def _add_install_parser(subparsers):
    parser = subparsers.add_parser("install", help="obtain a certificate and configure the web server")
    parser.add_argument("-d", "--domain", action="append",
                        help="domain name to include (can be given multiple times, first is the primary)")
    parser.add_argument("--domains", help="comma separated list of domain names")
    parser.add_argument("-e", "--email", help="account contact email address (default: email from config file)")
    parser.add_argument("-w", "--webroot", help="serve HTTP-01 challenges from this document root")
    parser.add_argument("--standalone", action="store_true",
                        help="answer TLS-ALPN-01 challenges with a built-in server")
    parser.add_argument("--dns", action="store_true", help="validate using DNS-01 (required for wildcards)")
    parser.add_argument("--http-port", type=int, help="port of the built-in HTTP-01 server (default=80)")
    parser.add_argument("--tls-port", type=int, help="port of the built-in TLS-ALPN-01 server (default=443)")
    parser.add_argument("--key-algorithm", choices=("rsa", "ec"), help="certificate key algorithm (default=rsa)")
    parser.add_argument("--key-size", type=int, help="certificate key size (rsa bits or ec curve size)")
    webserver = parser.add_mutually_exclusive_group()
    for kind in WEBSERVERS:
        webserver.add_argument("--{}".format(kind), dest="webserver", action="store_const", const=kind,
                               help="configure {} to use the certificate".format(kind))


def _add_renew_parser(subparsers):
    parser = subparsers.add_parser("renew", help="renew stored certificates that are about to expire")
    target = parser.add_mutually_exclusive_group()
    target.add_argument("-d", "--domain", help="renew the certificate of this domain only")
    target.add_argument("--all", action="store_true", help="renew all stored certificates immediately")
    parser.add_argument("--force", action="store_true", help="renew regardless of the remaining validity")
    parser.add_argument("--http-port", type=int, help="port of the built-in HTTP-01 server (default=80)")
    parser.add_argument("--tls-port", type=int, help="port of the built-in TLS-ALPN-01 server (default=443)")


def _add_status_parser(subparsers):
    parser = subparsers.add_parser("status", help="show stored certificates")
    parser.add_argument("-d", "--domain", help="show the certificate of this domain only")


def _add_schedule_parser(subparsers):
    parser = subparsers.add_parser("schedule", help="manage the recurring renewal job")
    parser.add_argument("action", choices=("install", "remove", "list"))
    parser.add_argument("--name", default=DEFAULT_TASK_NAME,
                        help="name of the scheduled task (default='{}')".format(DEFAULT_TASK_NAME))
    parser.add_argument("--cron", default=DEFAULT_SCHEDULE,
                        help="cron expression of the renewal job (default='{}')".format(DEFAULT_SCHEDULE))
    parser.add_argument("--executable", help="autocert executable run by the job (default: this program)")


def create_parser():
    parser = argparse.ArgumentParser(prog="autocert",
                                     description="autocert - certificate lifecycle manager using ACME")
    parser.add_argument("-c", "--config-file",
                        help="global configuration file (default='$config_dir/{}')".format(DEFAULT_CONF_FILENAME))
    parser.add_argument("--config-dir", help="configuration directory (default='{}')".format(DEFAULT_CONF_DIR))
    parser.add_argument("--cert-dir", help="certificate directory (default='$config_dir/{}')".format(
        DEFAULT_CERT_SUBDIR))
    parser.add_argument("--staging", action="store_true", help="use the staging authority")
    parser.add_argument("--authority-tos-agreement", "--tos-agreement", "--tos", dest="tos_agreement",
                        help="Agree to the authorities Terms of Service (value required depends on authority)")
    parser.add_argument("-v", "--verbose", action="store_true", help="print debug messages")
    subparsers = parser.add_subparsers(dest="command", metavar="command")
    subparsers.required = True
    _add_install_parser(subparsers)
    _add_renew_parser(subparsers)
    _add_status_parser(subparsers)
    _add_schedule_parser(subparsers)
    return parser


# @brief parse command line and configuration file
# @param argv command line arguments (default: sys.argv[1:])
# @return (runtimeconfig, settings)
def load(argv=None):
    args = create_parser().parse_args(argv)

    # Determine global configuration file
    config_dir = args.config_dir or DEFAULT_CONF_DIR
    if args.config_file:
        global_config_file = args.config_file
    else:
        global_config_file = os.path.join(config_dir, DEFAULT_CONF_FILENAME)

    globalconfig = load_config_file(global_config_file)
    settings = parse_settings(args, globalconfig)

    # Runtime configuration: Get from command-line options
    runtimeconfig = vars(args)
    if args.command == "install":
        domains = list(args.domain or [])
        if args.domains:
            domains.extend(args.domains.split(","))
        runtimeconfig['domains'] = domains or None
    return runtimeconfig, settings
