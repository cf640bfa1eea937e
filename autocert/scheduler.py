#!/usr/bin/env python
# -*- coding: utf-8 -*-

# scheduler - recurring renewal job registration (crontab / windows task scheduler)
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE

import csv
import io
import os
import shlex
import subprocess

from autocert.errors import SchedulerError
from autocert.tools import log

DEFAULT_TASK_NAME = "autocert-renew"
DEFAULT_SCHEDULE = "0 2 * * *"  # daily at 02:00
CRON_MARKER = "# autocert:"


class ScheduledTask:
    def __init__(self, name, status, next_run, last_run):
        self.name = name
        self.status = status
        self.next_run = next_run
        self.last_run = last_run


class CronScheduler:
    """Manages renewal jobs in the crontab of the current user.

    Every job line carries a trailing '# autocert:<name>' marker.
    """

    def _read(self):
        proc = subprocess.run(["crontab", "-l"], stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        if proc.returncode != 0:
            # crontab -l fails if the user has no crontab yet
            if b"no crontab" in proc.stderr.lower():
                return []
            raise SchedulerError("crontab -l failed: {}".format(proc.stderr.decode('utf-8', 'replace').strip()))
        return proc.stdout.decode('utf-8').splitlines()

    def _write(self, lines):
        content = "\n".join(lines) + "\n" if lines else ""
        proc = subprocess.run(["crontab", "-"], input=content.encode('utf-8'), stdout=subprocess.PIPE,
                              stderr=subprocess.PIPE)
        if proc.returncode != 0:
            raise SchedulerError("crontab update failed: {}".format(proc.stderr.decode('utf-8', 'replace').strip()))

    @staticmethod
    def _marker(task_name):
        return CRON_MARKER + task_name

    # @param options global command line options placed before the renew command
    def install(self, task_name, executable, schedule=DEFAULT_SCHEDULE, options=None):
        if len(schedule.split()) != 5:
            raise SchedulerError("Invalid cron expression: {}".format(schedule))
        marker = self._marker(task_name)
        lines = [line for line in self._read() if not line.endswith(marker)]
        command = " ".join(shlex.quote(arg) for arg in [executable] + list(options or []) + ["renew"])
        lines.append("{} {} {}".format(schedule, command, marker))
        self._write(lines)
        log("Installed cron job '{}' ({})".format(task_name, schedule))

    def remove(self, task_name):
        marker = self._marker(task_name)
        lines = self._read()
        remaining = [line for line in lines if not line.endswith(marker)]
        if len(remaining) == len(lines):
            raise SchedulerError("No scheduled task named '{}'".format(task_name))
        self._write(remaining)
        log("Removed cron job '{}'".format(task_name))

    def list(self):
        tasks = list()
        for line in self._read():
            if CRON_MARKER not in line:
                continue
            entry, name = line.rsplit(CRON_MARKER, 1)
            disabled = entry.lstrip().startswith("#")
            schedule = " ".join(entry.lstrip("# ").split()[:5])
            tasks.append(ScheduledTask(name.strip(), "disabled" if disabled else "enabled", schedule, "-"))
        return tasks


class WindowsScheduler:
    """Manages renewal jobs with schtasks.exe (daily schedules only)."""

    @staticmethod
    def _run(args):
        proc = subprocess.run(["schtasks"] + args, stdout=subprocess.PIPE, stderr=subprocess.STDOUT)
        output = proc.stdout.decode('utf-8', 'replace')
        if proc.returncode != 0:
            raise SchedulerError("schtasks {} failed: {}".format(args[0], output.strip()))
        return output

    @staticmethod
    def _daily_time(schedule):
        fields = schedule.split()
        if len(fields) != 5 or fields[2:] != ["*", "*", "*"] or not (fields[0].isdigit() and fields[1].isdigit()):
            raise SchedulerError("Only daily schedules ('M H * * *') are supported on Windows: {}".format(schedule))
        return "{:02d}:{:02d}".format(int(fields[1]), int(fields[0]))

    def install(self, task_name, executable, schedule=DEFAULT_SCHEDULE, options=None):
        command = subprocess.list2cmdline([executable] + list(options or []) + ["renew"])
        self._run(["/Create", "/F", "/SC", "DAILY", "/ST", self._daily_time(schedule), "/TN", task_name,
                   "/TR", command])
        log("Installed scheduled task '{}' ({})".format(task_name, schedule))

    def remove(self, task_name):
        self._run(["/Delete", "/F", "/TN", task_name])
        log("Removed scheduled task '{}'".format(task_name))

    def list(self):
        output = self._run(["/Query", "/FO", "CSV", "/V"])
        tasks = list()
        for row in csv.DictReader(io.StringIO(output)):
            name = (row.get("TaskName") or "").lstrip("\\")
            if "autocert" not in name:
                continue
            tasks.append(ScheduledTask(name, row.get("Status", ""), row.get("Next Run Time", ""),
                                       row.get("Last Run Time", "")))
        return tasks


# @brief the scheduler of the current platform
def scheduler():
    if os.name == 'nt':
        return WindowsScheduler()
    return CronScheduler()
