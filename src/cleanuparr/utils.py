# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

# pylint: disable=magic-value-comparison,missing-any-param-doc,missing-param-doc
# pylint: disable=missing-return-doc,missing-return-type-doc,missing-type-doc

"""
Utility functions or other shared constants and values.

Useful to avoid circular imports.
"""

import os
import re
import socket
import json
import fnmatch
import functools
import urllib.parse
import xmlrpc.client
import logging

import requests
import transmission_rpc
import arrapi
import qbittorrentapi
import deluge_client.client

TRUE_STRS = {"1", "true", "yes", "on"}
DEBUG = (  # noqa: F841
    "DEBUG" in os.environ  # pylint: disable=magic-value-comparison
    and os.environ["DEBUG"].strip().lower() in TRUE_STRS
)
POST_MORTEM = (  # noqa: F841
    "POST_MORTEM" in os.environ  # pylint: disable=magic-value-comparison
    and os.environ["POST_MORTEM"].strip().lower() in TRUE_STRS
)

RETRY_EXC_TYPES = (
    socket.error,
    transmission_rpc.error.TransmissionError,
    arrapi.exceptions.ConnectionFailure,
    qbittorrentapi.APIConnectionError,
    deluge_client.client.ConnectionLostException,
    requests.exceptions.ConnectionError,
    xmlrpc.client.ProtocolError,
    # Can be raised when deserializing JSON from an interrupted response:
    ValueError,
    json.JSONDecodeError,
)

REGEX_PATTERN_PREFIX = "regex:"


class CleanuparrValidationError(Exception):
    """
    Incorrect Cleanuparr configuration.
    """


def normalize_url(url):
    """
    Return the given URL in the same form regardless of port or authentication.

    - Do *not* include a port if the port matches the scheme.
    - Strip the authentication password or passphrase.
    """
    url = urllib.parse.urlsplit(url)
    netloc = url.hostname
    if url.port and (
        (url.scheme == "http" and url.port != 80)
        or (url.scheme == "https" and url.port != 443)
    ):
        netloc = f"{netloc}:{url.port}"
    if url.username:
        netloc = f"{url.username}@{netloc}"
    return url._replace(netloc=netloc).geturl()


def tracker_host(url):
    """
    Return the host name of a tracker announce URL, empty if it can't be parsed.
    """
    try:
        return (urllib.parse.urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


@functools.lru_cache(maxsize=256)
def compile_pattern(pattern):
    """
    Compile an ignore pattern: `regex:...`, a `*` wildcard, or a plain substring.
    """
    if pattern.lower().startswith(REGEX_PATTERN_PREFIX):
        return re.compile(pattern[len(REGEX_PATTERN_PREFIX) :], re.IGNORECASE)
    if "*" in pattern:
        return re.compile(fnmatch.translate(pattern), re.IGNORECASE)
    return re.compile(re.escape(pattern), re.IGNORECASE)


def matches_tracker(host, patterns):
    """
    Return True if the tracker host matches any of the given patterns.
    """
    if not host:
        return False
    for pattern in patterns:
        if not pattern:
            continue
        try:
            compiled = compile_pattern(pattern)
        except re.error as exc:
            logging.getLogger(__name__).warning(
                "Invalid tracker pattern %r: %s",
                pattern,
                exc,
            )
            continue
        if compiled.search(host) is not None:
            return True
    return False


def dry_run_aware(method):
    """
    Log instead of calling a destructive method when the owner is in dry-run mode.

    The owner must provide a `dry_run` attribute.
    """

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        if self.dry_run:
            logging.getLogger(method.__module__).info(
                "[dry run] Skipping %s.%s: %r",
                type(self).__name__,
                method.__name__,
                args,
            )
            return None
        return method(self, *args, **kwargs)

    return wrapper


class DaemonOnceFilter(logging.Filter):  # pylint: disable=too-few-public-methods
    """
    Log a given message only once per daemon session, the first loop.
    """

    def filter(self, record):
        """
        Check the record extra attributes to see if the runner has already looped once.
        """
        if (runner := getattr(record, "runner", None)) is not None:
            return not runner.quiet
        return True


daemon_once_filter = DaemonOnceFilter()
