#!/usr/bin/env python
# -*- coding: utf-8 -*-

# modes.dns - dns-01 challenge handlers (require dnspython)
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE
