#!/usr/bin/env python
# -*- coding: utf-8 -*-

# dns.abstract - base for dns-01 challenge handlers publishing TXT records
# Copyright (c) Rudolf Mayerhofer, 2018-2019
# available under the ISC license, see LICENSE

import ipaddress
import socket
import time
from datetime import datetime, timedelta

import dns.exception
import dns.message
import dns.name
import dns.query
import dns.rcode
import dns.rdatatype
import dns.resolver

from autocert import tools
from autocert.domains import dns_challenge_record
from autocert.modes.abstract import AbstractChallengeHandler
from autocert.tools import log

QUERY_TIMEOUT = 60  # seconds are the maximum for any query (otherwise the DNS server will be considered dead)


class DNSChallengeHandler(AbstractChallengeHandler):
    @staticmethod
    def _lookup_ip(domain_or_ip):
        try:
            return str(ipaddress.ip_address(domain_or_ip.strip()))
        except ValueError:
            pass
        # No literal ip given, resolve using system resolver
        result = socket.getaddrinfo(domain_or_ip, 53)
        if len(result) == 0:
            raise ValueError("Could not lookup dns ip for {}".format(domain_or_ip))
        return result[0][4][0]

    # @brief find the zone and its primary nameserver (SOA mname) of a domain
    @staticmethod
    def _lookup_zone(domain, nameserver=None):
        if nameserver:
            nameservers = [nameserver]
        else:
            nameservers = dns.resolver.get_default_resolver().nameservers

        name = dns.name.from_text(domain)
        while name.parent() != dns.name.root:
            request = dns.message.make_query(name, dns.rdatatype.SOA)
            for server in nameservers:
                try:
                    response = dns.query.udp(request, server, timeout=QUERY_TIMEOUT)
                except dns.exception.Timeout:
                    continue
                if response.rcode() != dns.rcode.NOERROR:
                    break
                for answer in response.answer:
                    for item in answer:
                        if item.rdtype == dns.rdatatype.SOA:
                            return name.to_text(), item.mname.to_text()
                break
            name = name.parent()
        raise ValueError('No zone SOA for "{0}"'.format(domain))

    @staticmethod
    def _check_txt_record_value(domain, txtvalue, nameserverip, use_tcp=False):
        try:
            request = dns.message.make_query(domain, dns.rdatatype.TXT)
            if use_tcp:
                response = dns.query.tcp(request, nameserverip, timeout=QUERY_TIMEOUT)
            else:
                response = dns.query.udp(request, nameserverip, timeout=QUERY_TIMEOUT)
            return any(answer.to_text().strip('"') == txtvalue for rrset in response.answer for answer in rrset)
        except dns.exception.DNSException:
            return False

    @staticmethod
    def _determine_txtvalue(thumbprint, token):
        return tools.bytes_to_base64url(tools.hash_of_str("{0}.{1}".format(token, thumbprint)))

    @staticmethod
    def get_challenge_type():
        return "dns-01"

    def __init__(self, config):
        AbstractChallengeHandler.__init__(self, config)
        self.dns_ttl = int(config.get("dns_ttl", 60))
        self.dns_verify_waittime = int(config.get("dns_verify_waittime", 2 * self.dns_ttl))
        self.dns_verify_interval = int(config.get("dns_verify_interval", 10))
        self.dns_verify_server = config.get("dns_verify_server")
        self._valid_times = {}

    @staticmethod
    def _determine_challenge_domain(domain):
        name = dns.name.from_text(dns_challenge_record(domain))
        return name.to_text()

    def create_challenge(self, domain, thumbprint, token):
        record = self._determine_challenge_domain(domain)
        self.add_dns_record(record, self._determine_txtvalue(thumbprint, token))
        self._valid_times[record] = datetime.now() + timedelta(seconds=self.dns_verify_waittime)

    def destroy_challenge(self, domain, thumbprint, token):
        record = self._determine_challenge_domain(domain)
        self.remove_dns_record(record, self._determine_txtvalue(thumbprint, token))

    def add_dns_record(self, domain, txtvalue):
        raise NotImplementedError

    def remove_dns_record(self, domain, txtvalue):
        raise NotImplementedError

    def start_challenge(self, domain, thumbprint, token):
        record = self._determine_challenge_domain(domain)
        txtvalue = self._determine_txtvalue(thumbprint, token)
        failtime = datetime.now() + timedelta(seconds=self.dns_verify_waittime + 1)
        if self.verify_dns_record(record, txtvalue):
            return
        log("Waiting until TXT record '{}' is ready".format(record))
        while failtime > datetime.now():
            time.sleep(self.dns_verify_interval)
            if self.verify_dns_record(record, txtvalue):
                return
        raise ValueError("DNS challenge is not ready after waiting {} seconds".format(self.dns_verify_waittime))

    def verify_dns_record(self, domain, txtvalue):
        if self.dns_verify_server:
            try:
                if self._check_txt_record_value(domain, txtvalue, self._lookup_ip(self.dns_verify_server)):
                    log("DNS server '{}' found correct TXT record for '{}'".format(self.dns_verify_server, domain))
                    return True
            except (ValueError, OSError):
                pass

        # otherwise wait until the record had time to propagate
        return domain in self._valid_times and datetime.now() >= self._valid_times[domain]
