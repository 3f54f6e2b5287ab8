# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

"""
Normalized view of a download item independent of the download client.
"""

import logging

from . import utils

logger = logging.getLogger(__name__)


def as_str(value):
    """
    Return the given download client value as a string, empty for `None`.
    """
    if value is None:
        return ""
    return str(value)


class DownloadItem:
    """
    Wrap one native download client item behind the same read/write interface.

    Sub-classes translate the native representation, they do no I/O beyond what
    the native object itself does.  The category setter writes back into the
    native object, the download service is responsible for persisting it.
    """

    def __init__(self, native, trackers=None):
        """
        Capture the native download client item, failing fast when missing.

        Tracker URLs are passed separately for download clients that list them in
        another request.
        """
        if native is None:
            raise ValueError(
                f"Cannot wrap a missing download item in {type(self).__name__}",
            )
        self.native = native
        self._trackers = list(trackers or [])

    def __repr__(self):
        """
        Readable, informative, and specific representation to ease debugging.
        """
        return f"<{type(self).__name__} {self.name!r}>"

    # Identity and naming

    @property
    def hash(self):
        """
        The download client item ID, case-insensitive.
        """
        raise NotImplementedError

    @property
    def name(self):
        """
        The download item display name.
        """
        raise NotImplementedError

    @property
    def category(self):
        """
        The download client category or label.
        """
        raise NotImplementedError

    @category.setter
    def category(self, value):
        raise NotImplementedError

    @property
    def tags(self):
        """
        Any tags for download clients that support them.
        """
        return []

    @property
    def trackers(self):
        """
        The tracker announce URLs of the download item.
        """
        return self._trackers

    # Sizes, speeds, and times

    @property
    def is_private(self):
        """
        Whether the download item comes from a private tracker.
        """
        raise NotImplementedError

    @property
    def size(self):
        """
        Total size of the wanted content in bytes.
        """
        raise NotImplementedError

    @property
    def downloaded_bytes(self):
        """
        The number of bytes downloaded so far.
        """
        raise NotImplementedError

    @property
    def completion_percentage(self):
        """
        Return how much of the download item is complete, between 0 and 100.
        """
        size = self.size
        if not size:
            return 0.0
        return min(self.downloaded_bytes / size * 100.0, 100.0)

    @property
    def download_speed(self):
        """
        Current download speed in bytes per second.
        """
        raise NotImplementedError

    @property
    def eta(self):
        """
        Seconds until completion, `0` or negative when unknown.
        """
        raise NotImplementedError

    @property
    def ratio(self):
        """
        Upload to download ratio.
        """
        raise NotImplementedError

    @property
    def seeding_time_seconds(self):
        """
        How long the download item has been seeding.
        """
        raise NotImplementedError

    # States

    def is_downloading(self):
        """
        Return True if the download item is actively downloading.
        """
        raise NotImplementedError

    def is_stalled(self):
        """
        Return True if downloading without throughput and without an ETA.
        """
        raise NotImplementedError

    def is_seeding(self):
        """
        Return True if the download item is complete and seeding.
        """
        raise NotImplementedError

    def is_metadata_downloading(self):
        """
        Return True if the download item is still fetching its metadata.
        """
        return False

    def is_ignored(self, patterns):
        """
        Return True if the hash, category, tags or a tracker host match a pattern.

        Hash, category, and tags must be equal ignoring case, tracker hosts match
        substrings, `*` wildcards, or `regex:` prefixed patterns.
        """
        patterns = [pattern for pattern in patterns or [] if pattern]
        if not patterns:
            return False
        lowered = {pattern.lower() for pattern in patterns}
        if self.hash.lower() in lowered:
            return True
        if self.category and self.category.lower() in lowered:
            return True
        if any(tag.lower() in lowered for tag in self.tags if tag):
            return True
        return any(
            utils.matches_tracker(utils.tracker_host(tracker), patterns)
            for tracker in self.trackers
        )
