#!/usr/bin/env python
# -*- coding: utf-8 -*-

# nginx - nginx configurator
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

from autocert.webserver.abstract import FileConfigurator


class Configurator(FileConfigurator):
    conf_dir = "/etc/nginx/conf.d"
    test_command = "nginx -t"
    reload_command = "nginx -s reload"

    def managed_lines(self, target):
        return [
            "ssl_certificate {};".format(target.fullchain_path),
            "ssl_certificate_key {};".format(target.key_path),
        ]

    def directive_updates(self, target):
        return [(r'^([ \t]*)server_name[ \t]+[^;]*;', "server_name {};".format(target.domains))]

    def render(self, target):
        lines = [
            "server {",
            "listen 443 ssl;",
            "listen [::]:443 ssl;",
            "server_name {};".format(target.domains),
        ]
        if target.webroot:
            lines.append("root {};".format(target.webroot))
        body = "\n".join(lines[:1] + [self.indent + line for line in lines[1:]])
        return body + "\n" + self.managed_block(target, self.indent) + "\n}\n"
