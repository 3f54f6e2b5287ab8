# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

"""
Value types shared by the download clients, the arr instances, and the jobs.
"""

import enum
import dataclasses
import typing

from . import utils


class DeleteReason(str, enum.Enum):
    """
    Why a download is removed from an arr queue, exactly one per removal.
    """

    NONE = "none"
    STALLED = "stalled"
    SLOW_SPEED = "slow-speed"
    ALL_FILES_SKIPPED = "all-files-skipped"
    ALL_FILES_SKIPPED_BY_CLIENT = "all-files-skipped-by-client"
    DOWNLOADING_METADATA = "downloading-metadata"
    FAILED_IMPORT = "failed-import"


class StrikeType(str, enum.Enum):
    """
    The rule a strike is counted against, part of the strike key.
    """

    STALLED = "stalled"
    DOWNLOADING_METADATA = "downloading-metadata"
    SLOW_SPEED = "slow-speed"
    SLOW_TIME = "slow-time"
    FAILED_IMPORT = "failed-import"


class CleanReason(str, enum.Enum):
    """
    Why a seeding download is cleaned up.
    """

    MAX_RATIO_REACHED = "max-ratio"
    MAX_SEED_TIME_REACHED = "max-seed-time"


class PrivacyType(str, enum.Enum):
    """
    Which downloads a rule applies to with regard to private trackers.
    """

    PUBLIC = "public"
    PRIVATE = "private"
    BOTH = "both"

    def matches(self, is_private):
        """
        Return True if a download with the given privacy falls under this type.
        """
        if self is PrivacyType.BOTH:
            return True
        return is_private == (self is PrivacyType.PRIVATE)


class HardLinkOutcome(str, enum.Enum):
    """
    Per item result of the orphaned download check.
    """

    LINKED = "linked"
    NOT_FOUND = "not-found"
    NO_FILES = "no-files"
    ORPHANED = "orphaned"
    ERROR = "error"


@dataclasses.dataclass
class DownloadCheckResult:  # pylint: disable=too-many-instance-attributes
    """
    The answer of a download client to "should this arr queue item be removed?".

    When `found` is False all other fields are meaningless defaults.
    """

    found: bool = False
    should_remove: bool = False
    is_private: bool = False
    delete_from_client: bool = False
    delete_reason: DeleteReason = DeleteReason.NONE
    error: typing.Optional[str] = None

    def remove(self, delete_reason, delete_from_client=False):
        """
        Return a copy flagged for removal for the given reason.
        """
        return dataclasses.replace(
            self,
            should_remove=True,
            delete_reason=delete_reason,
            delete_from_client=delete_from_client,
        )


class RuleResult(typing.NamedTuple):
    """
    The outcome of evaluating stall or slow rules against one download.
    """

    should_remove: bool = False
    delete_reason: DeleteReason = DeleteReason.NONE
    delete_from_client: bool = False


class DownloadFile(typing.NamedTuple):
    """
    One file of a download as reported by its client.
    """

    path: str
    skipped: bool = False


@dataclasses.dataclass
class QueueRecord:  # pylint: disable=too-many-instance-attributes
    """
    One record of an arr download queue.
    """

    id: int
    download_id: str
    title: str
    protocol: str = ""
    status: str = ""
    tracked_download_status: str = ""
    tracked_download_state: str = ""
    status_messages: typing.List[str] = dataclasses.field(default_factory=list)
    # Sonarr and Whisparr v2
    series_id: int = 0
    episode_id: int = 0
    season_number: int = 0
    # Radarr and Whisparr v3
    movie_id: int = 0
    # Lidarr
    artist_id: int = 0
    album_id: int = 0
    # Readarr
    author_id: int = 0
    book_id: int = 0

    @classmethod
    def from_api(cls, record):
        """
        Deserialize a record from the arr queue API JSON.
        """
        status_messages = []
        for status_message in record.get("statusMessages") or []:
            if status_message.get("title"):
                status_messages.append(status_message["title"])
            status_messages.extend(status_message.get("messages") or [])
        return cls(
            id=record["id"],
            download_id=record.get("downloadId") or "",
            title=record.get("title") or "",
            protocol=record.get("protocol") or "",
            status=record.get("status") or "",
            tracked_download_status=record.get("trackedDownloadStatus") or "",
            tracked_download_state=record.get("trackedDownloadState") or "",
            status_messages=status_messages,
            series_id=record.get("seriesId") or 0,
            episode_id=record.get("episodeId") or 0,
            season_number=record.get("seasonNumber") or 0,
            movie_id=record.get("movieId") or 0,
            artist_id=record.get("artistId") or 0,
            album_id=record.get("albumId") or 0,
            author_id=record.get("authorId") or 0,
            book_id=record.get("bookId") or 0,
        )

    @property
    def is_torrent(self):
        """
        Return True if the record was downloaded over a torrent protocol.
        """
        return "torrent" in self.protocol.lower()


@dataclasses.dataclass(frozen=True)
class SearchItem:
    """
    The searchable unit to look for again after a removal.

    `search_type` is one of `episode`, `season`, `movie`, `album`, or `book`.
    """

    search_type: str
    ids: typing.Tuple[int, ...]
    series_id: typing.Optional[int] = None


@dataclasses.dataclass
class RemovalRequest:  # pylint: disable=too-many-instance-attributes
    """
    A request to remove a queue item from an arr instance and search again.
    """

    instance: typing.Any
    record: QueueRecord
    search_items: typing.List[SearchItem]
    delete_reason: DeleteReason
    remove_from_client: bool = True
    is_pack: bool = False

    @property
    def key(self):
        """
        Return the idempotency key, the download and the arr instance.
        """
        return removal_key(self.record.download_id, self.instance.url)


def removal_key(download_id, instance_url):
    """
    Return the idempotency marker key for a download on an arr instance.
    """
    return (download_id.lower(), utils.normalize_url(instance_url).rstrip("/"))
