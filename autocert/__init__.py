#!/usr/bin/env python
# -*- coding: utf-8 -*-

# Certificate lifecycle manager using ACME
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import os
import shutil
import sys

from autocert import configuration, tools
from autocert.manager import LifecycleManager
from autocert.scheduler import scheduler as platform_scheduler
from autocert.tools import log


# @brief render rows as a left aligned plain text table
def format_table(headers, rows):
    rows = [[str(value) for value in row] for row in rows]
    widths = [max(len(cell) for cell in column) for column in zip(headers, *rows)]
    lines = list()
    for row in [headers] + rows:
        lines.append("  ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip())
    return os.linesep.join(lines)


def cmd_install(runtimeconfig, settings):
    manager = LifecycleManager(settings)
    result = manager.install(runtimeconfig['domains'], email=runtimeconfig['email'],
                             webroot=runtimeconfig['webroot'], standalone=runtimeconfig['standalone'],
                             dns=runtimeconfig['dns'], webserver=runtimeconfig['webserver'])
    for record in result.dns_records:
        log("Publish a TXT record at {} to validate with DNS".format(record))
    directory = manager.cert_store.directory(result.record.domains)
    if result.self_signed:
        log("Installed SELF-SIGNED certificate for {} in {}".format(result.record.domains, directory), warning=True)
    else:
        log("Installed certificate for {} in {}".format(result.record.domains, directory))


def cmd_renew(runtimeconfig, settings):
    manager = LifecycleManager(settings)
    if runtimeconfig['domain']:
        manager.renew(runtimeconfig['domain'], force=runtimeconfig['force'])
    else:
        results = manager.renew_all(force=runtimeconfig['all'] or runtimeconfig['force'])
        log("Checked {} certificate(s)".format(len(results)))


def cmd_status(runtimeconfig, settings):
    manager = LifecycleManager(settings)
    # collect everything first, nothing is printed if a certificate is missing
    statuses = manager.status(runtimeconfig['domain'])
    if not statuses:
        log("No certificates found in {}".format(settings['cert_dir']))
        return
    rows = list()
    for status in statuses:
        rows.append([status.domain, status.expiry_date.strftime("%Y-%m-%d %H:%M:%S"), status.days_left,
                     "yes" if status.is_valid else "EXPIRED", "SELF-SIGNED" if status.self_signed else "authority",
                     ",".join(status.domains)])
    log(format_table(["DOMAIN", "EXPIRES (UTC)", "DAYS", "VALID", "ISSUER", "NAMES"], rows))


# @brief global options a scheduled renew job needs to find the same configuration and certificates
def renew_options(runtimeconfig, settings):
    options = ["--config-dir", os.path.abspath(settings['config_dir'])]
    if runtimeconfig['config_file']:
        options += ["--config-file", os.path.abspath(runtimeconfig['config_file'])]
    options += ["--cert-dir", os.path.abspath(settings['cert_dir'])]
    if runtimeconfig['staging']:
        options.append("--staging")
    return options


def cmd_schedule(runtimeconfig, settings):
    tasks = platform_scheduler()
    action = runtimeconfig['action']
    if action == "install":
        executable = runtimeconfig['executable'] or shutil.which("autocert") or os.path.abspath(sys.argv[0])
        tasks.install(runtimeconfig['name'], executable, runtimeconfig['cron'], renew_options(runtimeconfig, settings))
    elif action == "remove":
        tasks.remove(runtimeconfig['name'])
    else:
        entries = tasks.list()
        if not entries:
            log("No scheduled renewal tasks found")
            return
        log(format_table(["NAME", "STATUS", "NEXT RUN", "LAST RUN"],
                         [[task.name, task.status, task.next_run, task.last_run] for task in entries]))


COMMANDS = {
    "install": cmd_install,
    "renew": cmd_renew,
    "status": cmd_status,
    "schedule": cmd_schedule,
}


def main(argv=None):
    # load config
    try:
        runtimeconfig, settings = configuration.load(argv)
    except (IOError, ValueError) as e:
        log("Could not load configuration: {}".format(e), error=True)
        return 1
    tools.DEBUG = runtimeconfig['verbose']
    try:
        COMMANDS[runtimeconfig['command']](runtimeconfig, settings)
    except Exception as e:
        log("{} failed: {}".format(runtimeconfig['command'], e), e if tools.DEBUG else None, error=True)
        return 1
    return 0
