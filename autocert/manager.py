#!/usr/bin/env python
# -*- coding: utf-8 -*-

# manager - certificate lifecycle (install / renew / status)
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import enum
import os

from autocert import webserver as webservers
from autocert.account import AccountStore
from autocert.authority import authority
from autocert.challenge import ChallengeMethod, select_challenge
from autocert.domains import parse_domains
from autocert.errors import AccountRegistrationFailed, AutocertError, ConfigurationInvalid, ReloadFailed
from autocert.pipeline import AcquisitionPipeline
from autocert.store import CertificateStore, needs_renewal
from autocert.tools import log


class State(enum.Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    CHECKING_EXPIRY = "checking-expiry"
    OBTAINING_IDENTITY = "obtaining-identity"
    ACQUIRING = "acquiring"
    PERSISTING = "persisting"
    CONFIGURING = "configuring"
    DONE = "done"
    FAILED = "failed"


class InstallResult:
    def __init__(self, record, self_signed, dns_records, configured, state):
        self.record = record
        self.self_signed = self_signed
        self.dns_records = dns_records
        self.configured = configured
        self.state = state


class LifecycleManager:
    """Drives a domain set from validation to a live web server configuration.

    IDLE -> VALIDATING -> [CHECKING_EXPIRY ->] OBTAINING_IDENTITY -> ACQUIRING
    -> PERSISTING -> CONFIGURING -> DONE, FAILED from any other state.
    Failures talking to the authority never reach this level: the pipeline
    answers them with a self-signed certificate.
    """

    def __init__(self, settings, account_store=None, cert_store=None, authority_factory=None,
                 configurator_factory=None):
        self.settings = settings
        if account_store is None:
            account_store = AccountStore(settings['config_dir'], settings.get('account_key_algorithm') or 'ec',
                                         settings.get('account_key_size'))
        self.account_store = account_store
        self.cert_store = cert_store if cert_store is not None else CertificateStore(settings['cert_dir'])
        self.authority_factory = authority_factory or authority
        self.configurator_factory = configurator_factory or webservers.configurator
        self.state = State.IDLE

    def _transition(self, state):
        log("{}: {} -> {}".format(self.__class__.__name__, self.state.value, state.value), debug=True)
        self.state = state

    def _failed(self):
        if self.state not in (State.DONE, State.FAILED):
            self._transition(State.FAILED)

    # @brief obtain and deploy a certificate for a domain set
    # @param domains comma separated string or list of domain names
    # @param email account contact (falls back to the configured default)
    # @param webroot serve HTTP-01 challenges from this directory
    # @param standalone answer TLS-ALPN-01 challenges with a built-in server
    # @param dns validate with DNS-01
    # @param webserver one of webserver.WEBSERVERS or None to skip configuration
    # @return InstallResult
    def install(self, domains, email=None, webroot=None, standalone=False, dns=False, webserver=None):
        self.state = State.IDLE
        try:
            self._transition(State.VALIDATING)
            domainset = parse_domains(domains)
            method = select_challenge(domainset, standalone=standalone, webroot=webroot, dns=dns)
            self._check_webserver(webserver)
            email = email or self.settings.get('email')

            with self.cert_store.lock(domainset):
                acquisition = self._acquire(domainset, method, email, webroot, webserver)
            configured = self._configure(domainset, webserver, webroot)
            self._transition(State.DONE)
            return InstallResult(acquisition.record, acquisition.self_signed, acquisition.dns_records, configured,
                                 self.state)
        except Exception:
            self._failed()
            raise

    # @brief renew the stored certificate of a domain set if it is due
    # @param domains domain (or domain set) of a stored certificate
    # @param force renew regardless of the remaining validity
    # @return InstallResult
    def renew(self, domains, force=False):
        self.state = State.IDLE
        try:
            self._transition(State.VALIDATING)
            domainset = self.cert_store.lookup(domains)
            previous = self.cert_store.load(domainset)
            options = previous.settings
            method = ChallengeMethod(options.get('challenge', ChallengeMethod.WEBROOT.value))
            webroot = options.get('webroot')
            webserver = options.get('webserver')
            select_challenge(domainset, standalone=method == ChallengeMethod.STANDALONE,
                             webroot=webroot if method == ChallengeMethod.WEBROOT else None,
                             dns=method == ChallengeMethod.DNS)
            self._check_webserver(webserver)

            with self.cert_store.lock(domainset):
                self._transition(State.CHECKING_EXPIRY)
                if not force:
                    status = self.cert_store.info(domainset)
                    if not needs_renewal(status):
                        log("Certificate for {} is valid for {} more days, no renewal required".format(
                            domainset, status.days_left))
                        self._transition(State.DONE)
                        return InstallResult(previous, previous.self_signed, [], False, self.state)
                log("Renewing certificate for {}{}".format(domainset, " (forced)" if force else ""))
                acquisition = self._acquire(domainset, method, options.get('email') or self.settings.get('email'),
                                            webroot, webserver, previous)
            configured = self._configure(domainset, webserver, webroot)
            self._transition(State.DONE)
            return InstallResult(acquisition.record, acquisition.self_signed, acquisition.dns_records, configured,
                                 self.state)
        except Exception:
            self._failed()
            raise

    # @brief renew every stored certificate, failures of one do not stop the others
    # @return list of InstallResult of the successful runs
    def renew_all(self, force=False):
        results = list()
        failures = 0
        for domainset in self.cert_store.list():
            try:
                results.append(self.renew(domainset, force))
            except Exception as e:
                log("Renewal of {} failed".format(domainset), e, error=True)
                failures += 1
        if failures > 0:
            raise AutocertError("{} certificate(s) could not be renewed".format(failures))
        return results

    # @brief inspect one stored certificate or all of them
    # @return list of CertificateStatus
    def status(self, domains=None):
        if domains:
            return [self.cert_store.info(self.cert_store.lookup(domains))]
        return [self.cert_store.info(domainset) for domainset in self.cert_store.list()]

    @staticmethod
    def _check_webserver(webserver):
        if webserver and webserver not in webservers.WEBSERVERS:
            raise ValueError("Unsupported web server: {} (choose from {})".format(
                webserver, ", ".join(webservers.WEBSERVERS)))

    # @brief account and authority for the run (None if the authority cannot be used)
    def _identity(self, method, email):
        self._transition(State.OBTAINING_IDENTITY)
        if method == ChallengeMethod.DNS and not self.settings.get('dns_provider'):
            return None
        if not email:
            log("No account email given, certificates cannot be requested from the authority", warning=True)
            return None
        account = self.account_store.load_or_create(email)
        acme = self.authority_factory(self.settings.get('authority') or {}, account)
        try:
            self.account_store.ensure_registered(account, acme)
        except AccountRegistrationFailed as e:
            log(str(e), warning=True)
        return acme

    # @brief identity, acquisition and persistence (caller holds the directory lock)
    def _acquire(self, domainset, method, email, webroot, webserver, previous=None):
        acme = self._identity(method, email)
        pipeline = AcquisitionPipeline(dict(self.settings, webroot=webroot), self.cert_store)

        self._transition(State.ACQUIRING)
        acquisition = pipeline.acquire(domainset, method, acme, previous)
        acquisition.record.settings = {
            'email': email,
            'challenge': method.value,
            'webroot': webroot,
            'webserver': webserver,
        }

        self._transition(State.PERSISTING)
        pipeline.persist(acquisition.record)
        return acquisition

    def _configure(self, domainset, webserver, webroot):
        if not webserver:
            log("No web server selected, configure TLS for {} manually using {}".format(
                domainset, self.cert_store.directory(domainset)), warning=True)
            return False

        self._transition(State.CONFIGURING)
        chain_path = self.cert_store.chain_path(domainset)
        target = webservers.ConfiguratorTarget(
            webserver, " ".join(domainset), self.cert_store.cert_path(domainset), self.cert_store.key_path(domainset),
            chain_path if os.path.isfile(chain_path) else None, self.cert_store.fullchain_path(domainset), webroot)
        configurator = self.configurator_factory(webserver, (self.settings.get('webservers') or {}).get(webserver))
        stored = "certificate is stored in {}".format(self.cert_store.directory(domainset))
        try:
            webservers.apply(configurator, target)
        except (ConfigurationInvalid, ReloadFailed) as e:
            raise type(e)("{} ({})".format(e, stored)) from e
        except OSError as e:
            raise ConfigurationInvalid("Writing {} configuration failed: {} ({})".format(webserver, e, stored)) from e
        return True
