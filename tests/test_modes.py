"""Tests for the challenge responders."""

import hashlib
import os
import shutil
import tempfile
import unittest
from urllib.request import urlopen

from autocert import modes
from autocert.modes import http, tlsalpn, webdir


class TestChallengeHandlerFactory(unittest.TestCase):

    def test_handlers_are_cached_per_settings(self):
        first = modes.challenge_handler({'mode': "http", 'port': 8080})
        self.assertIsInstance(first, http.ChallengeHandler)
        self.assertIs(modes.challenge_handler({'port': 8080, 'mode': "http"}), first)
        self.assertIsNot(modes.challenge_handler({'mode': "http", 'port': 8081}), first)

    def test_challenge_types(self):
        self.assertEqual(http.ChallengeHandler.get_challenge_type(), "http-01")
        self.assertEqual(tlsalpn.ChallengeHandler.get_challenge_type(), "tls-alpn-01")


class TestWebdir(unittest.TestCase):

    def setUp(self):
        self.webroot = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.webroot)

    def test_challenge_file(self):
        handler = webdir.ChallengeHandler({'webroot': self.webroot})
        handler.create_challenge("example.com", "thumb", "token123")
        path = os.path.join(self.webroot, ".well-known", "acme-challenge", "token123")
        with open(path) as challenge_fd:
            self.assertEqual(challenge_fd.read(), "token123.thumb")
        handler.destroy_challenge("example.com", "thumb", "token123")
        self.assertFalse(os.path.exists(path))

    def test_missing_webroot(self):
        with self.assertRaises(FileNotFoundError):
            webdir.ChallengeHandler({'webroot': os.path.join(self.webroot, "missing")})


class TestHTTPServer(unittest.TestCase):

    def test_serves_key_authorization(self):
        handler = http.ChallengeHandler({'bind_address': "127.0.0.1", 'port': 0})
        handler.create_challenge("example.com", "thumb", "token123")
        handler.start_challenge("example.com", "thumb", "token123")
        try:
            port = handler.server.server_address[1]
            url = "http://127.0.0.1:{}/.well-known/acme-challenge/token123".format(port)
            self.assertEqual(urlopen(url, timeout=10).read(), b"token123.thumb")
        finally:
            handler.stop_challenge("example.com", "thumb", "token123")
        self.assertIsNone(handler.server)
        handler.destroy_challenge("example.com", "thumb", "token123")
        self.assertEqual(handler.challenges, {})


class TestTLSALPN(unittest.TestCase):

    def test_validation_certificate(self):
        cert, _ = tlsalpn.validation_certificate("example.com", "token123.thumb")
        extension = cert.extensions.get_extension_for_oid(tlsalpn.ACME_IDENTIFIER_OID)
        self.assertTrue(extension.critical)
        self.assertEqual(extension.value.value, b"\x04\x20" + hashlib.sha256(b"token123.thumb").digest())

    def test_challenge_files_removed(self):
        handler = tlsalpn.ChallengeHandler({'port': 0})
        handler.create_challenge("example.com", "thumb", "token123")
        workdir = handler.workdir
        self.assertIn("example.com", handler.contexts)
        handler.destroy_challenge("example.com", "thumb", "token123")
        self.assertFalse(os.path.exists(workdir))
        self.assertIsNone(handler.workdir)


if __name__ == "__main__":
    unittest.main()
