# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

"""
Cleanuparr interaction with Servarr instances.
"""

import dataclasses
import logging

import tenacity
import arrapi
import arrapi.apis.base

from . import models
from . import utils

logger = logging.getLogger(__name__)

FAILED_IMPORT_STATES = {"importblocked", "importpending", "importfailed"}


@dataclasses.dataclass
class ArrAPIClient:
    """
    Wrap the `arrapi` client private/internal bits we depend on.
    """

    client: arrapi.apis.base.BaseAPI

    @property
    def get(self):
        """
        Return the `arrapi` client private/internal `GET` method.
        """
        return self.client._raw._get  # pylint: disable=protected-access

    @property
    def delete(self):
        """
        Return the `arrapi` client private/internal `DELETE` method.
        """
        return self.client._raw._delete  # pylint: disable=protected-access

    @property
    def post(self):
        """
        Return the `arrapi` client private/internal `POST` method.
        """
        return self.client._raw._post  # pylint: disable=protected-access


class ArrInstance:
    """
    An individual, specific Servarr instance that Cleanuparr interacts with.
    """

    # Map the different Servarr applications type terminology
    TYPE_MAPS = {
        "sonarr": {
            "client": arrapi.SonarrAPI,
            # Which queue record IDs identify the searchable item
            "identity": "episode",
            "queue_params": {
                "includeUnknownSeriesItems": "true",
                "includeSeries": "true",
                "includeEpisode": "true",
            },
        },
        "radarr": {
            "client": arrapi.RadarrAPI,
            "identity": "movie",
            "queue_params": {
                "includeUnknownMovieItems": "true",
                "includeMovie": "true",
            },
        },
        "lidarr": {
            "client": arrapi.LidarrAPI,
            "identity": "album",
            "queue_params": {
                "includeUnknownArtistItems": "true",
                "includeArtist": "true",
                "includeAlbum": "true",
            },
        },
        "readarr": {
            "client": arrapi.ReadarrAPI,
            "identity": "book",
            "queue_params": {
                "includeUnknownAuthorItems": "true",
                "includeAuthor": "true",
                "includeBook": "true",
            },
        },
    }
    # Whisparr identifies items like Sonarr up to v2 and like Radarr from v3
    WHISPARR_VERSIONS = {2: "sonarr", 3: "radarr"}
    DEFAULT_WHISPARR_VERSION = 2
    MAX_PAGE_SIZE = 250

    client = None

    def __init__(self, arr_config, config, striker=None):
        """
        Capture the instance configuration and the shared strike counters.
        """
        if arr_config.type not in self.TYPE_MAPS and arr_config.type != "whisparr":
            raise utils.CleanuparrValidationError(
                f"instance type {arr_config.type} is not yet supported",
            )
        self.arr_config = arr_config
        self.config = config
        self.striker = striker

    def __repr__(self):
        """
        Readable, informative, and specific representation to ease debugging.
        """
        return f"<{type(self).__name__} {self.name!r}>"

    @property
    def name(self):
        """
        The configured name of this instance.
        """
        return self.arr_config.name

    @property
    def url(self):
        """
        The configured URL of this instance.
        """
        return self.arr_config.url

    @property
    def dry_run(self):
        """
        Whether queue deletions and searches should only be logged.
        """
        return self.config.general.dry_run

    @property
    def identity_type(self):
        """
        Return the Servarr type whose identifiers this instance uses.
        """
        if self.arr_config.type != "whisparr":
            return self.arr_config.type
        version = self.arr_config.version or self.DEFAULT_WHISPARR_VERSION
        if version not in self.WHISPARR_VERSIONS:
            raise utils.CleanuparrValidationError(
                f"Whisparr version {version} is not yet supported: {self.name}",
            )
        return self.WHISPARR_VERSIONS[version]

    @property
    def type_map(self):
        """
        Return the terminology of this instance type.
        """
        return self.TYPE_MAPS[self.identity_type]

    @tenacity.retry(
        retry=tenacity.retry_if_exception_type(arrapi.exceptions.ConnectionFailure),
        wait=tenacity.wait_fixed(1),
        stop=tenacity.stop_after_attempt(3),
        reraise=True,
        before_sleep=tenacity.before_sleep_log(logger, logging.DEBUG),
    )
    def connect(self):
        """
        Connect the API client, waiting for reconnection on error.
        """
        logger.debug("Connecting to %s", self.name)
        self.client = ArrAPIClient(
            self.type_map["client"](self.arr_config.url, self.arr_config.api_key),
        )
        if self.arr_config.type == "whisparr":
            # All Whisparr versions serve the v3 API regardless of their major version
            self.client.client._raw.v3 = True  # pylint: disable=protected-access
        return self.client

    def get_api_pages(self, endpoint, page_number=1, **params):
        """
        Yield the records of each page of the given paged endpoint until exhausted.
        """
        response = {}
        while (
            # First page, no response yet
            not response
            # Are the pages for this endpoint on this Servarr instance exhausted?
            or (page_number - 1) * response["pageSize"] < response["totalRecords"]
        ):
            logger.debug(
                "Requesting %s %r page %s with params: %r",
                self.name,
                endpoint,
                page_number,
                params,
            )
            response = self.client.get(
                endpoint,
                # Maximum Servarr page size
                pageSize=self.MAX_PAGE_SIZE,
                page=page_number,
                **params,
            )
            page_number = response["page"] + 1
            if not response["records"]:
                break
            yield response["records"]

    def get_api_paged_records(self, endpoint, page_number=1, **params):
        """
        Yield each record of the given paged endpoint until exhausted.
        """
        for records in self.get_api_pages(endpoint, page_number=page_number, **params):
            yield from records

    def iterate_queue(self, on_page):
        """
        Pass each page of queue records with a download ID to the callback.

        Failing to fetch the queue aborts the run for this instance.
        """
        pages = self.get_api_pages("queue", **self.type_map["queue_params"])
        while True:
            try:
                records = next(pages, None)
            except arrapi.exceptions.ArrException as exc:
                logger.error("Failed to fetch the %s queue: %s", self.name, exc)
                raise
            if records is None:
                break
            on_page(
                [
                    models.QueueRecord.from_api(record)
                    for record in records
                    # `Pending` records have no download client hash yet
                    if record.get("downloadId")
                ],
            )

    def is_record_valid(self, record):
        """
        Return True if the record has the IDs needed to remove it and search again.
        """
        if not record.download_id:
            logger.debug("skip | download id is missing | %s", record.title)
            return False
        identity = self.type_map["identity"]
        if identity == "episode" and not (record.episode_id and record.series_id):
            logger.debug(
                "skip | episode id and/or series id missing | %s",
                record.title,
            )
            return False
        if identity == "movie" and not record.movie_id:
            logger.debug("skip | movie id missing | %s", record.title)
            return False
        if identity == "album" and not (record.artist_id and record.album_id):
            logger.debug("skip | artist id and/or album id missing | %s", record.title)
            return False
        if identity == "book" and not (record.author_id and record.book_id):
            logger.debug("skip | author id and/or book id missing | %s", record.title)
            return False
        return True

    @property
    def failed_import_max_strikes(self):
        """
        Return the failed import threshold, the instance one overrides the global.
        """
        if self.arr_config.failed_import_max_strikes > 0:
            return self.arr_config.failed_import_max_strikes
        return self.config.queue_cleaner.failed_import.max_strikes

    def is_failed_import(self, record):
        """
        Return True if the Servarr instance reports the record failed to import.
        """
        if record.tracked_download_status.lower() != "warning":
            return False
        if record.tracked_download_state.lower() in FAILED_IMPORT_STATES:
            return True
        return self.arr_config.type == "lidarr" and record.status.lower() == "completed"

    def should_remove_from_queue(self, record, is_private):
        """
        Strike a record that failed to import and return True at the limit.
        """
        failed_import = self.config.queue_cleaner.failed_import
        max_strikes = self.failed_import_max_strikes
        if max_strikes == 0:
            return False
        if is_private and failed_import.ignore_private:
            logger.debug(
                "skip failed import check | download is private | %s",
                record.title,
            )
            return False
        if not self.is_failed_import(record):
            return False

        patterns = [
            pattern.lower() for pattern in failed_import.ignored_patterns if pattern
        ]
        for message in record.status_messages:
            if any(pattern in message.lower() for pattern in patterns):
                logger.info(
                    "skip failed import check | contains ignored pattern | %s",
                    record.title,
                )
                return False

        return self.striker.strike_and_check_limit(
            record.download_id,
            record.title,
            max_strikes,
            models.StrikeType.FAILED_IMPORT,
        )

    def get_search_items(self, records):
        """
        Return what to search for again after removing all records of a download.

        Several records for one download are a pack, search the whole season.
        """
        identity = self.type_map["identity"]
        if identity == "episode":
            if len(records) > 1:
                seasons = []
                for record in records:
                    if (record.series_id, record.season_number) not in seasons:
                        seasons.append((record.series_id, record.season_number))
                return [
                    models.SearchItem("season", (season_number,), series_id)
                    for series_id, season_number in seasons
                ]
            return [
                models.SearchItem(
                    "episode",
                    tuple(record.episode_id for record in records),
                    records[0].series_id,
                ),
            ]
        field = {"movie": "movie_id", "album": "album_id", "book": "book_id"}[identity]
        ids = []
        for record in records:
            if getattr(record, field) not in ids:
                ids.append(getattr(record, field))
        return [models.SearchItem(identity, tuple(ids))]

    @utils.dry_run_aware
    def delete_queue_item(self, record, remove_from_client):
        """
        Remove the record from the queue, blocklisting the release.
        """
        logger.info(
            "Deleting queue item | remove from client: %s | %s | %s",
            remove_from_client,
            record.title,
            self.name,
        )
        return self.client.delete(
            f"queue/{record.id}",
            removeFromClient=str(bool(remove_from_client)).lower(),
            blocklist="true",
        )

    @utils.dry_run_aware
    def search(self, search_items):
        """
        Trigger a search command for each search item.
        """
        for search_item in search_items:
            command = search_command(search_item)
            logger.info("Searching | %r | %s", command, self.name)
            self.client.post("command", json=command)


def search_command(search_item):
    """
    Return the Servarr command to search again for the given item.
    """
    if search_item.search_type == "season":
        return {
            "name": "SeasonSearch",
            "seriesId": search_item.series_id,
            "seasonNumber": search_item.ids[0],
        }
    names = {
        "episode": ("EpisodeSearch", "episodeIds"),
        "movie": ("MoviesSearch", "movieIds"),
        "album": ("AlbumSearch", "albumIds"),
        "book": ("BookSearch", "bookIds"),
    }
    name, ids_key = names[search_item.search_type]
    return {"name": name, ids_key: list(search_item.ids)}


def create_arr_instance(arr_config, config, striker=None):
    """
    Return the arr instance for the configuration, fail on unsupported types.
    """
    return ArrInstance(arr_config, config, striker=striker)
