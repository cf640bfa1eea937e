#!/usr/bin/env python
# -*- coding: utf-8 -*-

# errors - exceptions raised by autocert
# Copyright (c) Markus Hauschild & David Klaftenegger, 2016.
# Copyright (c) Rudolf Mayerhofer, 2019.
# available under the ISC license, see LICENSE


class AutocertError(Exception):
    pass


class InvalidDomainFormat(AutocertError, ValueError):
    pass


class ConflictingChallengeIntent(AutocertError, ValueError):
    pass


class WildcardRequiresDNS(AutocertError, ValueError):
    pass


class WildcardUnsupportedForMethod(AutocertError, ValueError):
    pass


# Registration with the authority failed; logged, the operation continues without an account reference
class AccountRegistrationFailed(AutocertError):
    pass


class CertificateNotFound(AutocertError):
    pass


# The certificate may already be stored when one of the following two is raised
class ConfigurationInvalid(AutocertError):
    pass


class ReloadFailed(AutocertError):
    pass


class StoreError(AutocertError):
    pass


class SchedulerError(AutocertError):
    pass


# @brief failure of a single acquisition step, carries the step name and the underlying cause
class PipelineError(AutocertError):
    def __init__(self, step, cause):
        AutocertError.__init__(self, "{} failed: {}".format(step, cause))
        self.step = step
        self.cause = cause


# Remote part of the acquisition failed, triggers the self-signed fallback
class AcquisitionFailed(PipelineError):
    def __init__(self, cause, step="Obtain"):
        PipelineError.__init__(self, step, cause)
