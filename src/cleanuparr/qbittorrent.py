# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

"""
Cleanuparr interaction with qBittorrent through its Web API.
"""

import os
import time
import logging

import qbittorrentapi

from . import downloaditem
from . import downloadclient
from . import models

logger = logging.getLogger(__name__)

DOWNLOADING_STATES = {"downloading", "forcedDL", "stalledDL", "metaDL", "forcedMetaDL"}
SEEDING_STATES = {"uploading", "forcedUP", "stalledUP", "queuedUP", "pausedUP"}
METADATA_STATES = {"metaDL", "forcedMetaDL"}
# Pseudo-trackers qBittorrent lists for every torrent
PSEUDO_TRACKERS = {"** [DHT] **", "** [PeX] **", "** [LSD] **"}


class QBitItem(downloaditem.DownloadItem):
    """
    A qBittorrent torrent from `torrents/info`.
    """

    def __init__(self, native, trackers=None, is_private=False):
        super().__init__(native, trackers=trackers)
        self._is_private = is_private

    @property
    def hash(self):
        return downloaditem.as_str(self.native.get("hash"))

    @property
    def name(self):
        return downloaditem.as_str(self.native.get("name"))

    @property
    def category(self):
        return downloaditem.as_str(self.native.get("category"))

    @category.setter
    def category(self, value):
        self.native["category"] = value

    @property
    def tags(self):
        return [
            tag.strip()
            for tag in downloaditem.as_str(self.native.get("tags")).split(",")
            if tag.strip()
        ]

    @property
    def is_private(self):
        return self._is_private

    @property
    def size(self):
        return self.native.get("size") or 0

    @property
    def downloaded_bytes(self):
        return self.native.get("downloaded") or 0

    @property
    def completion_percentage(self):
        # `downloaded` also counts wasted and re-downloaded bytes
        progress = self.native.get("progress")
        if not self.size or progress is None:
            return super().completion_percentage
        return min(progress * 100.0, 100.0)

    @property
    def download_speed(self):
        return self.native.get("dlspeed") or 0

    @property
    def eta(self):
        return self.native.get("eta") or 0

    @property
    def ratio(self):
        return self.native.get("ratio") or 0.0

    @property
    def seeding_time_seconds(self):
        if self.native.get("seeding_time") is not None:
            return self.native["seeding_time"]
        completion_on = self.native.get("completion_on") or 0
        if completion_on <= 0:
            return 0
        return max(time.time() - completion_on, 0)

    @property
    def state(self):
        """
        The qBittorrent torrent state name.
        """
        return downloaditem.as_str(self.native.get("state"))

    def is_downloading(self):
        return self.state in DOWNLOADING_STATES

    def is_stalled(self):
        return self.state == "stalledDL" or (
            self.is_downloading()
            and not self.is_metadata_downloading()
            and self.download_speed <= 0
            and self.eta <= 0
        )

    def is_seeding(self):
        return self.state in SEEDING_STATES

    def is_metadata_downloading(self):
        return self.state in METADATA_STATES


class QBitService(downloadclient.DownloadService):
    """
    A qBittorrent download client.
    """

    TYPE = "qbittorrent"
    CLIENT_EXC_TYPES = (qbittorrentapi.APIError,)
    SUPPORTS_TAGS = True

    def connect_client(self):
        split_url = self.split_url
        client = qbittorrentapi.Client(
            host=split_url._replace(netloc=f"{split_url.hostname}:{self.port}")
            .geturl()
            .rstrip("/"),
            username=split_url.username,
            password=split_url.password,
            REQUESTS_ARGS={"timeout": self.config.general.http_timeout},
        )
        if split_url.username:
            client.auth_log_in()
        return client

    def get_trackers(self, item_hash):
        """
        Return the real tracker URLs of a torrent.
        """
        return [
            tracker["url"]
            for tracker in self.client.torrents_trackers(torrent_hash=item_hash)
            if tracker.get("url") and tracker["url"] not in PSEUDO_TRACKERS
        ]

    def get_is_private(self, item_hash):
        """
        Return True if the torrent properties flag it as private.
        """
        properties = self.client.torrents_properties(torrent_hash=item_hash)
        return bool(properties.get("is_private", False))

    def wrap(self, torrent):
        """
        Return the normalized item with its trackers and privacy.
        """
        return QBitItem(
            torrent,
            trackers=self.get_trackers(torrent["hash"]),
            is_private=self.get_is_private(torrent["hash"]),
        )

    def get_item(self, item_hash):
        torrents = self.client.torrents_info(torrent_hashes=item_hash)
        if not torrents:
            return None
        return self.wrap(torrents[0])

    def list_seeding_items(self):
        torrents = self.client.torrents_info(status_filter="completed")
        return [self.wrap(torrent) for torrent in torrents or [] if torrent.get("hash")]

    def get_files(self, item):
        save_path = downloaditem.as_str(item.native.get("save_path"))
        return [
            models.DownloadFile(
                path=os.path.join(save_path, item_file["name"]),
                skipped=item_file.get("priority", 1) == 0,
            )
            for item_file in self.client.torrents_files(torrent_hash=item.hash) or []
        ]

    def skipped_files_reason(self, item, files):
        if not files or not all(item_file.skipped for item_file in files):
            return None
        if (item.native.get("completion_on") or 0) > 0 and not item.downloaded_bytes:
            logger.debug(
                "all files are unwanted by qBittorrent | removing download | %s",
                item.name,
            )
            return models.DeleteReason.ALL_FILES_SKIPPED_BY_CLIENT, True
        logger.debug("all files are unwanted | removing download | %s", item.name)
        return models.DeleteReason.ALL_FILES_SKIPPED, True

    def get_categories(self):
        return list(self.client.torrents_categories().keys())

    def create_native_category(self, name):
        self.client.torrents_create_category(name=name)

    def delete_native(self, item_hash, delete_source_files):
        self.client.torrents_delete(
            delete_files=delete_source_files,
            torrent_hashes=item_hash.lower(),
        )

    def set_native_category(self, item, category):
        self.client.torrents_set_category(category=category, torrent_hashes=item.hash)

    def add_native_tag(self, item, tag):
        self.client.torrents_add_tags(tags=tag, torrent_hashes=item.hash)
        item.native["tags"] = ", ".join(item.tags + [tag])
