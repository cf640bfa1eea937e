#!/usr/bin/env python
# -*- coding: utf-8 -*-

# http - built-in http-01 challenge webserver (used when no webroot is given)
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import re
import socket
import threading
from http.server import HTTPServer, BaseHTTPRequestHandler

from autocert.modes.webdir import HTTPChallengeHandler, WELLKNOWN_PATH
from autocert.tools import log

HTTPServer.allow_reuse_address = True


class HTTPServer6(HTTPServer):
    address_family = socket.AF_INET6


class ChallengeHandler(HTTPChallengeHandler):
    def __init__(self, config):
        HTTPChallengeHandler.__init__(self, config)
        self.bind_address = config.get("bind_address", "")
        self.port = int(config.get("port", 80))
        self.challenges = {}
        self.server = None
        self.server_thread = None

    def _create_server(self):
        challenges = self.challenges
        token_regex = re.compile(r'^/{}/(?P<token>[^/]+)$'.format(re.escape(WELLKNOWN_PATH)))

        class _HTTPRequestHandler(BaseHTTPRequestHandler):
            def log_message(self, fmt, *args):
                log("Request from '%s': %s" % (self.address_string(), fmt % args), debug=True)

            def do_GET(self):
                match = token_regex.match(self.path)
                if match and match.group('token') in challenges:
                    value = challenges[match.group('token')].encode('utf-8')
                    rcode = 200
                else:
                    value = "404 - NOT FOUND".encode('utf-8')
                    rcode = 404
                self.send_response(rcode)
                self.send_header('Content-type', 'text/plain')
                self.send_header('Content-length', str(len(value)))
                self.end_headers()
                self.wfile.write(value)

        try:
            return HTTPServer6((self.bind_address, self.port), _HTTPRequestHandler)
        except (socket.gaierror, OSError):
            return HTTPServer((self.bind_address, self.port), _HTTPRequestHandler)

    def create_challenge(self, domain, thumbprint, token):
        self.challenges[token] = self.key_authorization(thumbprint, token)

    def destroy_challenge(self, domain, thumbprint, token):
        self.challenges.pop(token, None)

    def start_challenge(self, domain, thumbprint, token):
        if self.server is None:
            self.server = self._create_server()
        self.server_thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self.server_thread.start()
        log("Serving http-01 challenges on port {}".format(self.port), debug=True)
        HTTPChallengeHandler.start_challenge(self, domain, thumbprint, token)

    def stop_challenge(self, domain, thumbprint, token):
        if self.server_thread is not None and self.server_thread.is_alive():
            self.server.shutdown()
            self.server_thread.join()
        self.server_thread = None
        if self.server is not None:
            self.server.server_close()
            self.server = None
