#!/usr/bin/env python
# -*- coding: utf-8 -*-

# webdir - http-01 challenge handler writing into a web server's document root
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import os

from autocert import tools
from autocert.modes.abstract import AbstractChallengeHandler
from autocert.tools import log

WELLKNOWN_PATH = ".well-known/acme-challenge"


class HTTPChallengeHandler(AbstractChallengeHandler):
    @staticmethod
    def get_challenge_type():
        return "http-01"

    def __init__(self, config):
        AbstractChallengeHandler.__init__(self, config)
        self.http_verify = str(config.get("http_verify", "false")).lower() == "true"

    # @brief fetch the challenge ourselves before the authority does (if http_verify is enabled)
    def start_challenge(self, domain, thumbprint, token):
        if not self.http_verify:
            return
        keyauthorization = self.key_authorization(thumbprint, token)
        wellknown_url = "http://{0}/{1}/{2}".format(domain, WELLKNOWN_PATH, token)
        try:
            resp_data = tools.get_url(wellknown_url).read().decode('utf8').strip()
        except IOError as e:
            raise ValueError("keyauthorization verification of {} failed: {}".format(wellknown_url, e))
        if resp_data != keyauthorization:
            raise ValueError("keyauthorization and response data of {} do NOT match".format(wellknown_url))


class ChallengeHandler(HTTPChallengeHandler):
    def __init__(self, config):
        HTTPChallengeHandler.__init__(self, config)
        self.webroot = config.get("webroot", "/var/www/html")
        if not os.path.isdir(self.webroot):
            raise FileNotFoundError("Webroot directory ({}) does not exist!".format(self.webroot))
        self.challenge_directory = os.path.join(self.webroot, WELLKNOWN_PATH)

    def create_challenge(self, domain, thumbprint, token):
        os.makedirs(self.challenge_directory, exist_ok=True)
        wellknown_path = os.path.join(self.challenge_directory, token)
        log("Writing challenge for {} to {}".format(domain, wellknown_path), debug=True)
        tools.write_file(wellknown_path, self.key_authorization(thumbprint, token))

    def destroy_challenge(self, domain, thumbprint, token):
        os.remove(os.path.join(self.challenge_directory, token))
