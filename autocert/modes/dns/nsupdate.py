#!/usr/bin/env python
# -*- coding: utf-8 -*-

# dns.nsupdate - rfc2136 based challenge handler
# Copyright (c) Rudolf Mayerhofer, 2019
# available under the ISC license, see LICENSE

import io
import re

import dns.query
import dns.rdata
import dns.rdataclass
import dns.rdatatype
import dns.tsigkeyring
import dns.update

from autocert.modes.dns.abstract import DNSChallengeHandler, QUERY_TIMEOUT
from autocert.tools import log

DEFAULT_KEY_ALGORITHM = "hmac-sha256"


class ChallengeHandler(DNSChallengeHandler):
    # @brief read a bind style TSIG key file
    # @return tuple of (keyring, algorithm)
    @staticmethod
    def _read_tsigkey(tsig_key_file, key_name=None):
        try:
            with io.open(tsig_key_file) as key_file:
                key_struct = key_file.read()
            if not key_name:
                key_name = re.search(r"key \"?([^\"{ ]+?)\"? {.*};", key_struct, re.DOTALL).group(1)
            key_data = re.search(r"key \"?%s\"? {(.*?)};" % re.escape(key_name), key_struct, re.DOTALL).group(1)
            algorithm = re.search(r"algorithm ([a-zA-Z0-9_-]+?);", key_data, re.DOTALL).group(1)
            tsig_secret = re.search(r"secret \"(.*?)\"", key_data, re.DOTALL).group(1)
        except IOError as exc:
            raise ValueError("A problem was encountered opening your keyfile '{}': {}".format(tsig_key_file, exc))
        except AttributeError as exc:
            raise ValueError("Unable to decipher data from your keyfile: {}".format(exc))

        return dns.tsigkeyring.from_text({key_name: tsig_secret}), algorithm or DEFAULT_KEY_ALGORITHM

    def __init__(self, config):
        DNSChallengeHandler.__init__(self, config)
        if 'nsupdate_keyfile' in config:
            self.keyring, self.keyalgorithm = self._read_tsigkey(config["nsupdate_keyfile"],
                                                                 config.get("nsupdate_keyname"))
        else:
            self.keyring = dns.tsigkeyring.from_text({
                config.get("nsupdate_keyname"): config.get("nsupdate_keyvalue")
            })
            self.keyalgorithm = config.get("nsupdate_keyalgorithm", DEFAULT_KEY_ALGORITHM)
        self.nsupdate_server = config.get("nsupdate_server")

    def _determine_zone_and_nameserverip(self, domain):
        if self.nsupdate_server:
            nameserverip = self._lookup_ip(self.nsupdate_server)
            zone, _ = self._lookup_zone(domain, nameserverip)
        else:
            zone, nameserver = self._lookup_zone(domain)
            nameserverip = self._lookup_ip(nameserver)
        return zone, nameserverip

    def add_dns_record(self, domain, txtvalue):
        zone, nameserverip = self._determine_zone_and_nameserverip(domain)
        update = dns.update.Update(zone, keyring=self.keyring, keyalgorithm=self.keyalgorithm)
        update.add(domain, self.dns_ttl, dns.rdatatype.TXT, txtvalue)
        log('Adding \'{} {} IN TXT "{}"\' to {}'.format(domain, self.dns_ttl, txtvalue, nameserverip))
        dns.query.tcp(update, nameserverip, timeout=QUERY_TIMEOUT)

    def remove_dns_record(self, domain, txtvalue):
        zone, nameserverip = self._determine_zone_and_nameserverip(domain)
        update = dns.update.Update(zone, keyring=self.keyring, keyalgorithm=self.keyalgorithm)
        update.delete(domain, dns.rdata.from_text(dns.rdataclass.IN, dns.rdatatype.TXT, txtvalue))
        log('Deleting \'{} {} IN TXT "{}"\' from {}'.format(domain, self.dns_ttl, txtvalue, nameserverip))
        dns.query.tcp(update, nameserverip, timeout=QUERY_TIMEOUT)

    def verify_dns_record(self, domain, txtvalue):
        _, nameserverip = self._determine_zone_and_nameserverip(domain)
        if not self._check_txt_record_value(domain, txtvalue, nameserverip, use_tcp=True):
            # Primary has not picked up the update yet
            return False
        return DNSChallengeHandler.verify_dns_record(self, domain, txtvalue)
