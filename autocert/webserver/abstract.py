#!/usr/bin/env python
# -*- coding: utf-8 -*-

# abstract - base class for web server configurators
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import io
import os
import re
import subprocess

from autocert import tools
from autocert.errors import ConfigurationInvalid, ReloadFailed
from autocert.tools import log

BEGIN_MARKER = "# BEGIN autocert"
END_MARKER = "# END autocert"


class AbstractConfigurator:
    # command used to check the configuration syntax
    test_command = None
    # command used to apply the configuration without dropping connections
    reload_command = None

    def __init__(self, settings):
        self.settings = settings

    def configure(self, target):
        raise NotImplementedError

    # @brief undo the last configure call (called when the configuration test failed)
    def revert(self):
        pass

    # @brief run a shell command and return its output
    # @raise subprocess.CalledProcessError or OSError on failure
    @staticmethod
    def _run(command):
        output = subprocess.check_output(command, shell=True, stderr=subprocess.STDOUT)
        if isinstance(output, bytes):
            output = output.decode('utf-8', 'replace')
        return output

    @staticmethod
    def _describe_failure(command, e):
        output = getattr(e, 'output', None)
        if isinstance(output, bytes):
            output = output.decode('utf-8', 'replace')
        message = "{} failed ({})".format(command, getattr(e, 'returncode', e))
        if output:
            message += os.linesep + tools.indent(output.strip(), 4)
        return message

    def test(self):
        command = self.settings.get('test_command', self.test_command)
        try:
            output = self._run(command)
        except (subprocess.CalledProcessError, OSError) as e:
            raise ConfigurationInvalid(self._describe_failure(command, e))
        log("Configuration test passed: {}".format(command))
        if output:
            log(tools.indent(output.strip(), 4), debug=True)

    def reload(self):
        command = self.settings.get('reload_command', self.reload_command)
        try:
            self._run(command)
        except (subprocess.CalledProcessError, OSError) as e:
            raise ReloadFailed(self._describe_failure(command, e))
        log("Reloaded: {}".format(command))


class FileConfigurator(AbstractConfigurator):
    """Maintains one configuration file per domain set.

    Existing files are merged: only the managed block between the autocert
    markers and the certificate/name directives are replaced.
    """

    conf_dir = None
    indent = "    "

    def __init__(self, settings):
        AbstractConfigurator.__init__(self, settings)
        # (path, contents before the last configure call or None if the file did not exist)
        self._previous = None

    def conf_path(self, target):
        return os.path.join(self.settings.get('conf_dir', self.conf_dir), "autocert-{}.conf".format(
            target.primary.replace("*", "_wildcard")))

    # @brief render a complete configuration for a new file
    def render(self, target):
        raise NotImplementedError

    # @brief directive lines placed between the markers
    def managed_lines(self, target):
        raise NotImplementedError

    # @brief (regex, directive) tuples updating directives outside the markers, group 1 keeps the indentation
    def directive_updates(self, target):
        return []

    def managed_block(self, target, indent):
        lines = [indent + BEGIN_MARKER] + [indent + line for line in self.managed_lines(target)]
        lines.append(indent + END_MARKER)
        return "\n".join(lines)

    def merge(self, existing, target):
        marker_regex = re.compile(r'^([ \t]*){}\n.*?^[ \t]*{}[ \t]*$'.format(re.escape(BEGIN_MARKER),
                                                                            re.escape(END_MARKER)),
                                  re.MULTILINE | re.DOTALL)
        match = marker_regex.search(existing)
        if match is None:
            # unmanaged file, keep it and add a new block for our domains
            return existing.rstrip("\n") + "\n\n" + self.render(target)
        merged = existing[:match.start()] + self.managed_block(target, match.group(1)) + existing[match.end():]
        for regex, directive in self.directive_updates(target):
            merged = re.sub(regex, lambda m, d=directive: m.group(1) + d, merged, flags=re.MULTILINE)
        return merged

    def configure(self, target):
        path = self.conf_path(target)
        if os.path.isfile(path):
            with io.open(path) as conf_fd:
                previous = conf_fd.read()
            content = self.merge(previous, target)
            log("Updating {}".format(path))
        else:
            previous = None
            content = self.render(target)
            log("Creating {}".format(path))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        tools.write_file(path, content)
        self._previous = (path, previous)

    def revert(self):
        if self._previous is None:
            return
        path, previous = self._previous
        self._previous = None
        if previous is None:
            log("Removing rejected configuration {}".format(path), warning=True)
            os.unlink(path)
        else:
            log("Restoring previous configuration {}".format(path), warning=True)
            tools.write_file(path, previous)
