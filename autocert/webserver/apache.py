#!/usr/bin/env python
# -*- coding: utf-8 -*-

# apache - apache httpd configurator
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

from autocert.webserver.abstract import FileConfigurator


class Configurator(FileConfigurator):
    conf_dir = "/etc/apache2/sites-enabled"
    test_command = "apachectl configtest"
    reload_command = "apachectl graceful"

    def managed_lines(self, target):
        lines = [
            "SSLEngine on",
            "SSLCertificateFile {}".format(target.cert_path),
            "SSLCertificateKeyFile {}".format(target.key_path),
        ]
        if target.chain_path:
            lines.append("SSLCertificateChainFile {}".format(target.chain_path))
        return lines

    def _names(self, target):
        names = target.domains.split(" ")
        return names[0], names[1:]

    def directive_updates(self, target):
        server_name, aliases = self._names(target)
        updates = [(r'^([ \t]*)ServerName[ \t]+\S+[ \t]*$', "ServerName {}".format(server_name))]
        if aliases:
            updates.append((r'^([ \t]*)ServerAlias[ \t]+.*$', "ServerAlias {}".format(" ".join(aliases))))
        else:
            # single name, drop the aliases of an earlier domain set
            updates.append((r'^()[ \t]*ServerAlias[ \t]+[^\n]*\n', ""))
        return updates

    def render(self, target):
        server_name, aliases = self._names(target)
        lines = ["ServerName {}".format(server_name)]
        if aliases:
            lines.append("ServerAlias {}".format(" ".join(aliases)))
        if target.webroot:
            lines.append("DocumentRoot {}".format(target.webroot))
        body = "\n".join(self.indent + line for line in lines)
        return "<VirtualHost *:443>\n" + body + "\n" + self.managed_block(target, self.indent) + "\n</VirtualHost>\n"
