#!/usr/bin/env python
# -*- coding: utf-8 -*-

# account - persistent ACME account identities
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import io
import json
import os
import re
import threading

from autocert import tools
from autocert.errors import AccountRegistrationFailed, StoreError
from autocert.tools import log

ACCOUNT_FILE = "account.json"
ACCOUNT_KEY_FILE = "account.key"
LOCK_FILE = ".lock"

_registration_locks = dict()
_registration_locks_guard = threading.Lock()


class Account:
    def __init__(self, email, key, registration=None):
        self.email = email
        self.key = key
        self.registration = registration

    def __repr__(self):
        return "Account(email={!r}, registration={!r})".format(self.email, self.registration)


# @brief transform an email address into a filesystem safe directory name
def sanitize_email(email):
    return re.sub(r"[^A-Za-z0-9._-]", "_", email)


# @brief in-process lock serializing registration for one email
def _registration_lock(email):
    with _registration_locks_guard:
        if email not in _registration_locks:
            _registration_locks[email] = threading.Lock()
        return _registration_locks[email]


class AccountStore:
    """Stores ACME account identities below <config_dir>/accounts/<email>/.

    The private key is written once when the account is created and never
    rewritten. account.json carries the email and the registration reference.
    """

    def __init__(self, config_dir, key_algorithm='ec', key_size=None):
        self.accounts_dir = os.path.join(config_dir, "accounts")
        self.key_algorithm = key_algorithm
        self.key_size = key_size

    def account_dir(self, email):
        return os.path.join(self.accounts_dir, sanitize_email(email))

    def _account_file(self, email):
        return os.path.join(self.account_dir(email), ACCOUNT_FILE)

    def _key_file(self, email):
        return os.path.join(self.account_dir(email), ACCOUNT_KEY_FILE)

    # @brief read the persisted registration reference (None if not registered yet)
    def _read_registration(self, email):
        account_file = self._account_file(email)
        if not os.path.isfile(account_file):
            return None
        try:
            with io.open(account_file) as account_fd:
                return json.load(account_fd).get('registration')
        except (ValueError, AttributeError) as e:
            raise StoreError("Account file {} is corrupt: {}".format(account_file, e))

    def _read_key(self, email):
        key_file = self._key_file(email)
        log("Reading account key for {} from {}".format(email, key_file))
        try:
            return tools.read_pem_file(key_file, key=True)
        except (TypeError, ValueError) as e:
            raise StoreError("Account key {} is unreadable: {}".format(key_file, e))

    # @brief load the account for email or create a new one
    # @return Account (registration is None for new accounts)
    def load_or_create(self, email):
        account_dir = self.account_dir(email)
        key_file = self._key_file(email)
        if os.path.isfile(key_file):
            return Account(email, self._read_key(email), self._read_registration(email))

        with _registration_lock(email):
            os.makedirs(account_dir, mode=0o700, exist_ok=True)
            with tools.file_lock(os.path.join(account_dir, LOCK_FILE)):
                # created by another process or thread while waiting for the lock
                if os.path.isfile(key_file):
                    return Account(email, self._read_key(email), self._read_registration(email))

                log("Account key not found at '{}'. Creating key.".format(key_file))
                key = tools.new_account_key(None, self.key_algorithm, self.key_size)
                tools.write_new_file(key_file, tools.convert_key_to_pem_bytes(key), 0o600)
                account = Account(email, key)
                self.persist(account)
                return account

    # @brief write email and registration reference of an account
    def persist(self, account):
        os.makedirs(self.account_dir(account.email), mode=0o700, exist_ok=True)
        data = json.dumps({'email': account.email, 'registration': account.registration}, indent=2)
        tools.write_file(self._account_file(account.email), data, 0o600)

    # @brief make sure the account is registered with the authority
    # @param account the Account to register
    # @param acme the ACME authority bound to the account key
    # @return the account with its registration reference set
    # @raise AccountRegistrationFailed if the authority rejected or could not be reached
    def ensure_registered(self, account, acme):
        if account.registration:
            return account

        with _registration_lock(account.email):
            os.makedirs(self.account_dir(account.email), mode=0o700, exist_ok=True)
            with tools.file_lock(os.path.join(self.account_dir(account.email), LOCK_FILE)):
                # another process or thread may have registered in the meantime
                registration = self._read_registration(account.email)
                if registration:
                    account.registration = registration
                    acme.set_registration(registration)
                    return account

                try:
                    account.registration = acme.register(account.email)
                except Exception as e:
                    raise AccountRegistrationFailed("Registering account {} failed: {}".format(account.email, e))

                try:
                    self.persist(account)
                except OSError as e:
                    log("Could not persist registration of account {}".format(account.email), e, warning=True)
        return account
