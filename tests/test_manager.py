"""Tests for the certificate lifecycle manager."""

import os
import shutil
import tempfile
import unittest
from unittest.mock import MagicMock

from autocert import tools
from autocert.account import AccountStore
from autocert.domains import parse_domains
from autocert.errors import (AutocertError, CertificateNotFound, ConfigurationInvalid, ConflictingChallengeIntent,
                             InvalidDomainFormat, WildcardRequiresDNS)
from autocert.manager import LifecycleManager, State
from autocert.store import CertificateStore
from tests.helpers import FakeAuthority, TEST_SETTINGS, make_record


class ManagerTestCase(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.settings = dict(TEST_SETTINGS, config_dir=os.path.join(self.tmp, "config"),
                             cert_dir=os.path.join(self.tmp, "certs"), email="admin@example.com")
        self.webroot = os.path.join(self.tmp, "www")
        os.makedirs(self.webroot)
        self.acme = FakeAuthority()
        self.authority_factory = MagicMock(return_value=self.acme)
        self.configurator = MagicMock()
        self.configurator_factory = MagicMock(return_value=self.configurator)

    def tearDown(self):
        shutil.rmtree(self.tmp)

    def manager(self, acme=None):
        if acme is not None:
            self.authority_factory.return_value = acme
        return LifecycleManager(self.settings, authority_factory=self.authority_factory,
                                configurator_factory=self.configurator_factory)

    def cert_dir(self, name):
        return os.path.join(self.settings['cert_dir'], name)


class TestInstall(ManagerTestCase):

    def test_webroot_install_with_nginx(self):
        manager = self.manager()
        result = manager.install("example.com", webroot=self.webroot, webserver="nginx")
        self.assertEqual(result.state, State.DONE)
        self.assertEqual(manager.state, State.DONE)
        self.assertFalse(result.self_signed)
        self.assertTrue(result.configured)
        self.assertEqual([c[0] for c in self.configurator.method_calls], ["configure", "test", "reload"])
        target = self.configurator.configure.call_args[0][0]
        self.assertEqual(target.domains, "example.com")
        self.assertEqual(target.cert_path, os.path.join(self.cert_dir("example.com"), "cert.pem"))
        self.assertEqual(target.chain_path, os.path.join(self.cert_dir("example.com"), "chain.pem"))
        self.assertEqual(target.webroot, self.webroot)
        self.configurator_factory.assert_called_once_with("nginx", None)
        self.assertEqual(self.acme.registered, ["admin@example.com"])
        self.assertEqual(self.acme.responders[0][1]['webroot'], self.webroot)

    def test_settings_recorded_for_renewal(self):
        self.manager().install("example.com", webroot=self.webroot, webserver="apache")
        record = CertificateStore(self.settings['cert_dir']).load(parse_domains("example.com"))
        self.assertEqual(record.settings, {'email': "admin@example.com", 'challenge': "webroot",
                                           'webroot': self.webroot, 'webserver': "apache"})

    def test_wildcard_without_dns_fails_before_mutation(self):
        manager = self.manager()
        with self.assertRaises(WildcardRequiresDNS):
            manager.install("*.example.com", webroot=self.webroot, webserver="nginx")
        self.assertEqual(manager.state, State.FAILED)
        self.assertFalse(os.path.exists(self.settings['cert_dir']))
        self.assertFalse(os.path.exists(self.settings['config_dir']))
        self.authority_factory.assert_not_called()
        self.configurator_factory.assert_not_called()

    def test_validation_errors(self):
        manager = self.manager()
        with self.assertRaises(InvalidDomainFormat):
            manager.install("exa mple.com")
        with self.assertRaises(ConflictingChallengeIntent):
            manager.install("example.com", standalone=True, dns=True)
        with self.assertRaises(ValueError):
            manager.install("example.com", webserver="lighttpd")
        self.assertFalse(os.path.exists(self.settings['cert_dir']))

    def test_failing_authority_installs_independent_self_signed_certificates(self):
        manager = self.manager(FakeAuthority(obtain_error=IOError("unreachable")))
        first = manager.install("a.example.com")
        second = manager.install("b.example.com")
        self.assertTrue(first.self_signed)
        self.assertTrue(second.self_signed)
        self.assertEqual(first.state, State.DONE)
        self.assertFalse(first.configured)
        store = CertificateStore(self.settings['cert_dir'])
        status_a = store.info(parse_domains("a.example.com"))
        status_b = store.info(parse_domains("b.example.com"))
        self.assertTrue(status_a.self_signed)
        self.assertEqual(status_a.domains, ["a.example.com"])
        self.assertEqual(status_b.domains, ["b.example.com"])
        self.assertNotEqual(first.record.key, second.record.key)

    def test_repeated_install_replaces_self_signed_certificate(self):
        manager = self.manager(FakeAuthority(obtain_error=IOError("unreachable")))
        first = manager.install("example.com")
        second = manager.install("example.com")
        self.assertTrue(first.self_signed)
        self.assertTrue(second.self_signed)
        self.assertTrue(first.record.certificate)
        self.assertTrue(second.record.certificate)
        self.assertNotEqual(first.record.key, second.record.key)
        with open(os.path.join(self.cert_dir("example.com"), "cert.pem"), 'rb') as cert_fd:
            self.assertEqual(cert_fd.read(), second.record.certificate)
        with open(os.path.join(self.cert_dir("example.com"), "key.pem"), 'rb') as key_fd:
            self.assertEqual(key_fd.read(), second.record.key)
        status = CertificateStore(self.settings['cert_dir']).info(parse_domains("example.com"))
        self.assertTrue(status.is_valid)
        self.assertTrue(status.self_signed)

    def test_multi_domain_fallback_keeps_all_names(self):
        manager = self.manager(FakeAuthority(obtain_error=IOError("unreachable")))
        result = manager.install("example.com,www.example.com,api.example.com")
        self.assertTrue(result.self_signed)
        cert = tools.convert_pem_str_to_cert(result.record.certificate)
        self.assertEqual(tools.get_cert_san(cert), ["example.com", "www.example.com", "api.example.com"])
        self.assertTrue(os.path.isfile(os.path.join(self.cert_dir("example.com_san"), "cert.pem")))

    def test_registration_failure_falls_back(self):
        acme = FakeAuthority(registration=None, register_error=IOError("unreachable"))
        acme.obtain_error = ValueError("account not registered")
        result = self.manager(acme).install("example.com")
        self.assertTrue(result.self_signed)
        self.assertEqual(result.state, State.DONE)

    def test_without_email_no_authority_is_used(self):
        self.settings['email'] = None
        result = self.manager().install("example.com")
        self.assertTrue(result.self_signed)
        self.authority_factory.assert_not_called()

    def test_dns_without_provider(self):
        result = self.manager().install("*.example.com,example.com", dns=True)
        self.assertTrue(result.self_signed)
        self.assertEqual(result.dns_records, ["_acme-challenge.example.com", "_acme-challenge.example.com"])
        self.authority_factory.assert_not_called()
        self.assertFalse(os.path.exists(os.path.join(self.settings['config_dir'], "accounts")))

    def test_configuration_failure_reports_stored_certificate(self):
        self.configurator.test.side_effect = ConfigurationInvalid("nginx -t failed")
        manager = self.manager()
        with self.assertRaises(ConfigurationInvalid) as ctx:
            manager.install("example.com", webserver="nginx")
        self.assertIn(self.cert_dir("example.com"), str(ctx.exception))
        self.assertEqual(manager.state, State.FAILED)
        self.configurator.reload.assert_not_called()
        self.assertTrue(os.path.isfile(os.path.join(self.cert_dir("example.com"), "cert.pem")))

    def test_account_reused_between_installs(self):
        manager = self.manager()
        manager.install("a.example.com")
        manager.install("b.example.com")
        self.assertEqual(self.acme.registered, ["admin@example.com"])
        account = AccountStore(self.settings['config_dir']).load_or_create("admin@example.com")
        self.assertEqual(account.registration, "https://acme.test/acct/1")


class TestRenew(ManagerTestCase):

    def save(self, domains, days, **kwargs):
        settings = {'email': "admin@example.com", 'challenge': "webroot", 'webroot': self.webroot,
                    'webserver': None}
        settings.update(kwargs)
        CertificateStore(self.settings['cert_dir']).save(make_record(domains, days, settings=settings))

    def test_valid_certificate_is_kept(self):
        self.save("example.com", 60)
        manager = self.manager()
        result = manager.renew("example.com")
        self.assertEqual(result.state, State.DONE)
        self.assertFalse(result.configured)
        self.authority_factory.assert_not_called()
        self.assertEqual(self.acme.obtained, [])

    def test_expiring_certificate_is_renewed(self):
        self.save("example.com", 10, webserver="nginx")
        result = self.manager().renew("example.com")
        self.assertFalse(result.self_signed)
        self.assertEqual(len(self.acme.renewed), 1)
        self.assertTrue(result.configured)
        days = CertificateStore(self.settings['cert_dir']).info(parse_domains("example.com")).days_left
        self.assertGreater(days, 80)

    def test_force(self):
        self.save("example.com", 60)
        self.manager().renew("example.com", force=True)
        self.assertEqual(len(self.acme.renewed), 1)

    def test_renew_by_primary_of_multi_domain_set(self):
        self.save("example.com,www.example.com", 5)
        self.manager().renew("example.com")
        self.assertEqual(self.acme.obtained, [["example.com", "www.example.com"]])

    def test_missing_certificate(self):
        manager = self.manager()
        with self.assertRaises(CertificateNotFound):
            manager.renew("missing.example.com")
        self.assertEqual(manager.state, State.FAILED)
        self.assertFalse(os.path.exists(self.cert_dir("missing.example.com")))

    def test_renew_all(self):
        self.save("a.example.com", 5)
        self.save("b.example.com", 60)
        results = self.manager().renew_all()
        self.assertEqual(len(results), 2)
        self.assertEqual(self.acme.obtained, [["a.example.com"]])

    def test_renew_all_forced(self):
        self.save("a.example.com", 5)
        self.save("b.example.com", 60)
        self.manager().renew_all(force=True)
        self.assertEqual(len(self.acme.obtained), 2)

    def test_renew_all_continues_after_failure(self):
        self.save("a.example.com", 5, webserver="nginx")
        self.save("b.example.com", 5)
        self.configurator.reload.side_effect = ConfigurationInvalid("reload failed")
        with self.assertRaises(AutocertError):
            self.manager().renew_all()
        self.assertEqual(len(self.acme.obtained), 2)


class TestStatus(ManagerTestCase):

    def test_missing_certificate(self):
        with self.assertRaises(CertificateNotFound):
            self.manager().status("missing.example.com")

    def test_all_certificates(self):
        manager = self.manager(FakeAuthority(obtain_error=IOError("unreachable")))
        manager.install("a.example.com")
        manager.install("b.example.com,c.example.com")
        statuses = manager.status()
        self.assertEqual([s.domain for s in statuses], ["a.example.com", "b.example.com"])
        self.assertTrue(all(s.self_signed for s in statuses))
        self.assertEqual(manager.status("b.example.com")[0].domains, ["b.example.com", "c.example.com"])

    def test_empty_store(self):
        self.assertEqual(self.manager().status(), [])


if __name__ == "__main__":
    unittest.main()
