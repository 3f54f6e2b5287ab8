# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

"""
Cleanuparr interaction with Deluge through its daemon RPC and the label plugin.
"""

import os
import logging

import deluge_client
import deluge_client.client

from . import downloaditem
from . import downloadclient
from . import models

logger = logging.getLogger(__name__)

FIELDS = [
    "hash",
    "name",
    "state",
    "private",
    "total_size",
    "total_done",
    "download_payload_rate",
    "eta",
    "ratio",
    "seeding_time",
    "label",
    "trackers",
    "save_path",
]


class DelugeItem(downloaditem.DownloadItem):
    """
    A Deluge torrent status.
    """

    def __init__(self, native, trackers=None):
        if trackers is None and native is not None:
            trackers = [
                tracker.get("url")
                for tracker in native.get("trackers") or []
                if tracker.get("url")
            ]
        super().__init__(native, trackers=trackers)

    @property
    def hash(self):
        return downloaditem.as_str(self.native.get("hash"))

    @property
    def name(self):
        return downloaditem.as_str(self.native.get("name"))

    @property
    def category(self):
        return downloaditem.as_str(self.native.get("label"))

    @category.setter
    def category(self, value):
        self.native["label"] = value

    @property
    def is_private(self):
        return bool(self.native.get("private"))

    @property
    def size(self):
        return self.native.get("total_size") or 0

    @property
    def downloaded_bytes(self):
        return self.native.get("total_done") or 0

    @property
    def download_speed(self):
        return self.native.get("download_payload_rate") or 0

    @property
    def eta(self):
        return int(self.native.get("eta") or 0)

    @property
    def ratio(self):
        return self.native.get("ratio") or 0.0

    @property
    def seeding_time_seconds(self):
        return self.native.get("seeding_time") or 0

    @property
    def state(self):
        """
        The Deluge torrent state name.
        """
        return downloaditem.as_str(self.native.get("state"))

    def is_downloading(self):
        return self.state.lower() == "downloading"

    def is_stalled(self):
        return self.is_downloading() and self.download_speed == 0 and self.eta == 0

    def is_seeding(self):
        return self.state.lower() == "seeding"


class DelugeService(downloadclient.DownloadService):
    """
    A Deluge download client.
    """

    TYPE = "deluge"
    CLIENT_EXC_TYPES = (deluge_client.client.DelugeClientException,)
    DEFAULT_PORT = 58846

    def connect_client(self):
        split_url = self.split_url
        client = deluge_client.DelugeRPCClient(
            split_url.hostname,
            self.port,
            split_url.username or "",
            split_url.password or "",
            decode_utf8=True,
        )
        client.connect()
        return client

    def get_status(self, item_hash, fields):
        """
        Return the torrent status fields, empty if Deluge doesn't know the hash.
        """
        return self.client.call("core.get_torrent_status", item_hash.lower(), fields)

    def get_item(self, item_hash):
        status = self.get_status(item_hash, FIELDS)
        if not status or not status.get("hash"):
            return None
        return DelugeItem(status)

    def list_seeding_items(self):
        statuses = self.client.call(
            "core.get_torrents_status",
            {"state": "Seeding"},
            FIELDS,
        )
        items = []
        for item_hash, status in (statuses or {}).items():
            status.setdefault("hash", item_hash)
            items.append(DelugeItem(status))
        return items

    def get_files(self, item):
        status = self.get_status(item.hash, ["files", "file_priorities", "save_path"])
        if not status:
            return []
        priorities = status.get("file_priorities") or []
        save_path = downloaditem.as_str(status.get("save_path"))
        item_files = []
        for item_file in status.get("files") or []:
            index = item_file.get("index", len(item_files))
            priority = priorities[index] if index < len(priorities) else 1
            item_files.append(
                models.DownloadFile(
                    path=os.path.join(save_path, item_file["path"]),
                    skipped=priority == 0,
                ),
            )
        return item_files

    def get_categories(self):
        return self.client.call("label.get_labels") or []

    def create_native_category(self, name):
        self.client.call("label.add", name)

    def delete_native(self, item_hash, delete_source_files):
        if not self.get_status(item_hash, ["hash"]):
            logger.debug("Download already deleted | %s | %s", item_hash, self.name)
            return
        self.client.call("core.remove_torrent", item_hash.lower(), delete_source_files)

    def set_native_category(self, item, category):
        self.client.call("label.set_torrent", item.hash.lower(), category)
