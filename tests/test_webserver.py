"""Tests for the web server configurators."""

import os
import shutil
import subprocess
import tempfile
import unittest
from unittest.mock import MagicMock, patch

from cryptography.hazmat.primitives.serialization import pkcs12

from autocert import webserver
from autocert.domains import parse_domains
from autocert.errors import ConfigurationInvalid, ReloadFailed
from autocert.store import CertificateStore
from autocert.webserver import ConfiguratorTarget
from tests.helpers import make_record

EXISTING_NGINX = """server {
    listen 443 ssl;
    server_name old.example.com;
    # BEGIN autocert
    ssl_certificate /old/fullchain.pem;
    ssl_certificate_key /old/key.pem;
    # END autocert
    location / {
        proxy_pass http://127.0.0.1:8080;
    }
}
"""


class ConfiguratorTestCase(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.conf_dir = os.path.join(self.tmp, "conf.d")

    def tearDown(self):
        shutil.rmtree(self.tmp)

    def target(self, kind, domains="example.com www.example.com", chain=True):
        return ConfiguratorTarget(kind, domains, "/certs/example.com_san/cert.pem", "/certs/example.com_san/key.pem",
                                  "/certs/example.com_san/chain.pem" if chain else None,
                                  "/certs/example.com_san/fullchain.pem", "/var/www/html")

    def read(self, path):
        with open(path) as conf_fd:
            return conf_fd.read()


class TestNginx(ConfiguratorTestCase):

    def setUp(self):
        ConfiguratorTestCase.setUp(self)
        self.configurator = webserver.configurator("nginx", {'conf_dir': self.conf_dir})

    def test_new_configuration(self):
        self.configurator.configure(self.target("nginx"))
        content = self.read(os.path.join(self.conf_dir, "autocert-example.com.conf"))
        self.assertIn("server_name example.com www.example.com;", content)
        self.assertIn("ssl_certificate /certs/example.com_san/fullchain.pem;", content)
        self.assertIn("ssl_certificate_key /certs/example.com_san/key.pem;", content)
        self.assertIn("root /var/www/html;", content)
        self.assertIn("listen 443 ssl;", content)

    def test_merge_existing_configuration(self):
        os.makedirs(self.conf_dir)
        path = os.path.join(self.conf_dir, "autocert-example.com.conf")
        with open(path, "w") as conf_fd:
            conf_fd.write(EXISTING_NGINX)
        self.configurator.configure(self.target("nginx"))
        content = self.read(path)
        self.assertIn("    server_name example.com www.example.com;\n", content)
        self.assertIn("    ssl_certificate /certs/example.com_san/fullchain.pem;\n", content)
        self.assertNotIn("/old/", content)
        self.assertNotIn("old.example.com", content)
        self.assertIn("proxy_pass http://127.0.0.1:8080;", content)
        self.assertEqual(content.count("# BEGIN autocert"), 1)

    def test_unmanaged_file_gets_new_block(self):
        os.makedirs(self.conf_dir)
        path = os.path.join(self.conf_dir, "autocert-example.com.conf")
        with open(path, "w") as conf_fd:
            conf_fd.write("# hand written\n")
        self.configurator.configure(self.target("nginx"))
        content = self.read(path)
        self.assertTrue(content.startswith("# hand written\n"))
        self.assertIn("# BEGIN autocert", content)

    def test_commands(self):
        self.assertEqual(self.configurator.test_command, "nginx -t")
        self.assertEqual(self.configurator.reload_command, "nginx -s reload")


class TestApache(ConfiguratorTestCase):

    def setUp(self):
        ConfiguratorTestCase.setUp(self)
        self.configurator = webserver.configurator("apache", {'conf_dir': self.conf_dir})

    def test_new_configuration(self):
        self.configurator.configure(self.target("apache"))
        content = self.read(os.path.join(self.conf_dir, "autocert-example.com.conf"))
        self.assertIn("<VirtualHost *:443>", content)
        self.assertIn("ServerName example.com", content)
        self.assertIn("ServerAlias www.example.com", content)
        self.assertIn("SSLCertificateFile /certs/example.com_san/cert.pem", content)
        self.assertIn("SSLCertificateKeyFile /certs/example.com_san/key.pem", content)
        self.assertIn("SSLCertificateChainFile /certs/example.com_san/chain.pem", content)

    def test_merge_updates_names(self):
        self.configurator.configure(self.target("apache"))
        self.configurator.configure(self.target("apache", "example.com api.example.com", chain=False))
        content = self.read(os.path.join(self.conf_dir, "autocert-example.com.conf"))
        self.assertIn("ServerAlias api.example.com", content)
        self.assertNotIn("www.example.com", content)
        self.assertNotIn("SSLCertificateChainFile", content)

    def test_merge_to_single_name_drops_aliases(self):
        self.configurator.configure(self.target("apache"))
        self.configurator.configure(self.target("apache", "example.com"))
        content = self.read(os.path.join(self.conf_dir, "autocert-example.com.conf"))
        self.assertIn("    ServerName example.com\n", content)
        self.assertNotIn("ServerAlias", content)
        self.assertNotIn("www.example.com", content)
        self.assertIn("SSLCertificateFile /certs/example.com_san/cert.pem", content)


class TestApply(ConfiguratorTestCase):

    def test_order(self):
        configurator = MagicMock()
        webserver.apply(configurator, self.target("nginx"))
        self.assertEqual([c[0] for c in configurator.method_calls], ["configure", "test", "reload"])

    def test_failed_test_prevents_reload(self):
        configurator = webserver.configurator("nginx", {'conf_dir': self.conf_dir})
        error = subprocess.CalledProcessError(1, "nginx -t", output=b"syntax error")
        with patch("autocert.webserver.abstract.subprocess.check_output", side_effect=error) as check_output:
            with self.assertRaises(ConfigurationInvalid) as ctx:
                webserver.apply(configurator, self.target("nginx"))
        self.assertEqual(check_output.call_count, 1)
        self.assertIn("syntax error", str(ctx.exception))
        self.assertFalse(os.path.exists(os.path.join(self.conf_dir, "autocert-example.com.conf")))

    def test_failed_test_restores_previous_configuration(self):
        os.makedirs(self.conf_dir)
        path = os.path.join(self.conf_dir, "autocert-example.com.conf")
        with open(path, "w") as conf_fd:
            conf_fd.write(EXISTING_NGINX)
        configurator = webserver.configurator("nginx", {'conf_dir': self.conf_dir, 'test_command': "false"})
        error = subprocess.CalledProcessError(1, "false", output=b"")
        with patch("autocert.webserver.abstract.subprocess.check_output", side_effect=error):
            with self.assertRaises(ConfigurationInvalid):
                webserver.apply(configurator, self.target("nginx"))
        self.assertEqual(self.read(path), EXISTING_NGINX)

    def test_reload_failure(self):
        configurator = webserver.configurator("nginx", {'conf_dir': self.conf_dir})
        outputs = [b"ok", subprocess.CalledProcessError(1, "nginx -s reload", output=b"")]
        with patch("autocert.webserver.abstract.subprocess.check_output", side_effect=outputs):
            with self.assertRaises(ReloadFailed):
                webserver.apply(configurator, self.target("nginx"))

    def test_command_overrides(self):
        configurator = webserver.configurator("nginx", {'conf_dir': self.conf_dir,
                                                        'test_command': "true", 'reload_command': "true"})
        with patch("autocert.webserver.abstract.subprocess.check_output", return_value=b"") as check_output:
            configurator.test()
            configurator.reload()
        self.assertEqual([c[0][0] for c in check_output.call_args_list], ["true", "true"])

    def test_unknown_webserver(self):
        with self.assertRaises(ValueError):
            webserver.configurator("lighttpd")


class TestIIS(ConfiguratorTestCase):

    def test_configure_imports_pfx_and_binds_hosts(self):
        store = CertificateStore(os.path.join(self.tmp, "certs"))
        record = make_record("example.com,www.example.com", 60)
        store.save(record)
        domainset = parse_domains("example.com,www.example.com")
        target = ConfiguratorTarget("iis", "example.com www.example.com", store.cert_path(domainset),
                                    store.key_path(domainset), store.chain_path(domainset),
                                    store.fullchain_path(domainset))
        configurator = webserver.configurator("iis", {'site': "Shop"})
        with patch.object(configurator, "_run", return_value="") as run:
            configurator.configure(target)
        script = run.call_args[0][0]
        self.assertTrue(script.startswith("powershell -NoProfile"))
        self.assertIn("Import-PfxCertificate", script)
        self.assertIn("-HostHeader 'example.com'", script)
        self.assertIn("-HostHeader 'www.example.com'", script)
        self.assertIn("AddSslCertificate", script)
        pfx_path = os.path.join(store.directory(domainset), "cert.pfx")
        self.assertTrue(os.path.isfile(pfx_path))
        password = script.split("ConvertTo-SecureString -String '")[1].split("'")[0]
        with open(pfx_path, 'rb') as pfx_fd:
            pfx = pkcs12.load_pkcs12(pfx_fd.read(), password.encode('utf8'))
        self.assertEqual(len(pfx.additional_certs), 1)

    def test_binding_failure(self):
        configurator = webserver.configurator("iis", {})
        store = CertificateStore(os.path.join(self.tmp, "certs"))
        store.save(make_record("example.com", 60, self_signed=True))
        domainset = parse_domains("example.com")
        target = ConfiguratorTarget("iis", "example.com", store.cert_path(domainset), store.key_path(domainset))
        with patch.object(configurator, "_run", side_effect=OSError("powershell not found")):
            with self.assertRaises(ConfigurationInvalid):
                configurator.configure(target)


if __name__ == "__main__":
    unittest.main()
