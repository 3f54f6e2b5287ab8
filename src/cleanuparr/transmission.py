# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

"""
Cleanuparr interaction with Transmission through its RPC API.
"""

import os
import logging

import transmission_rpc

from . import downloaditem
from . import downloadclient
from . import models

logger = logging.getLogger(__name__)

STATUS_STOPPED = 0
STATUS_DOWNLOADING = 4
STATUS_SEED_PENDING = 5
STATUS_SEEDING = 6

FIELDS = [
    "id",
    "hashString",
    "name",
    "labels",
    "isPrivate",
    "totalSize",
    "downloadedEver",
    "leftUntilDone",
    "rateDownload",
    "eta",
    "uploadRatio",
    "secondsSeeding",
    "status",
    "metadataPercentComplete",
    "trackers",
    "downloadDir",
    "doneDate",
]
FILE_FIELDS = ["hashString", "downloadDir", "files", "fileStats"]


class TransmissionItem(downloaditem.DownloadItem):
    """
    A Transmission torrent, the raw RPC fields.
    """

    def __init__(self, native, trackers=None):
        if trackers is None and native is not None:
            trackers = [
                tracker.get("announce")
                for tracker in native.get("trackers") or []
                if tracker.get("announce")
            ]
        super().__init__(native, trackers=trackers)

    @property
    def hash(self):
        return downloaditem.as_str(self.native.get("hashString"))

    @property
    def name(self):
        return downloaditem.as_str(self.native.get("name"))

    @property
    def labels(self):
        """
        All Transmission labels, the first one is used as the category.
        """
        return [label for label in self.native.get("labels") or [] if label]

    @property
    def category(self):
        labels = self.labels
        return labels[0] if labels else ""

    @category.setter
    def category(self, value):
        self.native["labels"] = [value] + [
            label for label in self.labels[1:] if label != value
        ]

    @property
    def is_private(self):
        return bool(self.native.get("isPrivate"))

    @property
    def size(self):
        return self.native.get("totalSize") or 0

    @property
    def downloaded_bytes(self):
        return self.native.get("downloadedEver") or 0

    @property
    def download_speed(self):
        return self.native.get("rateDownload") or 0

    @property
    def eta(self):
        return self.native.get("eta") or 0

    @property
    def ratio(self):
        ratio = self.native.get("uploadRatio") or 0.0
        # Transmission reports -1 when nothing has been downloaded
        return max(ratio, 0.0)

    @property
    def seeding_time_seconds(self):
        return self.native.get("secondsSeeding") or 0

    @property
    def status(self):
        """
        The Transmission numeric torrent status.
        """
        return self.native.get("status", STATUS_STOPPED)

    def is_downloading(self):
        return self.status == STATUS_DOWNLOADING

    def is_stalled(self):
        return self.is_downloading() and self.download_speed <= 0 and self.eta <= 0

    def is_seeding(self):
        return self.status in {STATUS_SEED_PENDING, STATUS_SEEDING}

    def is_metadata_downloading(self):
        return (
            self.is_downloading()
            and self.native.get("metadataPercentComplete", 1) < 1
        )

    def is_complete(self):
        """
        Return True if stopped after downloading everything.
        """
        return (
            self.status == STATUS_STOPPED
            and not self.native.get("leftUntilDone")
            and (self.native.get("doneDate") or 0) > 0
        )


class TransmissionService(downloadclient.DownloadService):
    """
    A Transmission download client.
    """

    TYPE = "transmission"
    CLIENT_EXC_TYPES = (transmission_rpc.error.TransmissionError,)
    DEFAULT_PORT = 9091

    def connect_client(self):
        split_url = self.split_url
        return transmission_rpc.client.Client(
            protocol=split_url.scheme,
            host=split_url.hostname,
            port=self.port,
            path=split_url.path or "/transmission/rpc",
            username=split_url.username,
            password=split_url.password,
            timeout=self.config.general.http_timeout,
        )

    def get_torrent_fields(self, item_hash, arguments):
        """
        Return the raw fields of one torrent, `None` if Transmission doesn't know it.
        """
        torrents = self.client.get_torrents(
            ids=[item_hash.lower()],
            arguments=arguments,
        )
        if not torrents:
            return None
        return dict(torrents[0].fields)

    def get_item(self, item_hash):
        fields = self.get_torrent_fields(item_hash, FIELDS)
        if fields is None:
            return None
        return TransmissionItem(fields)

    def list_seeding_items(self):
        items = [
            TransmissionItem(dict(torrent.fields))
            for torrent in self.client.get_torrents(arguments=FIELDS) or []
        ]
        return [item for item in items if item.is_seeding() or item.is_complete()]

    def get_files(self, item):
        fields = self.get_torrent_fields(item.hash, FILE_FIELDS)
        if fields is None:
            return []
        download_dir = downloaditem.as_str(fields.get("downloadDir"))
        file_stats = fields.get("fileStats") or []
        item_files = []
        for index, item_file in enumerate(fields.get("files") or []):
            wanted = True
            if index < len(file_stats):
                wanted = file_stats[index].get("wanted", True)
            item_files.append(
                models.DownloadFile(
                    path=os.path.join(download_dir, item_file["name"]),
                    skipped=not wanted,
                ),
            )
        return item_files

    def delete_native(self, item_hash, delete_source_files):
        self.client.remove_torrent(
            ids=[item_hash.lower()],
            delete_data=delete_source_files,
        )

    def set_native_category(self, item, category):
        labels = [category] + [label for label in item.labels[1:] if label != category]
        self.client.change_torrent(ids=[item.hash.lower()], labels=labels)
