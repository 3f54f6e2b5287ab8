# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

"""
Cleanuparr interaction with rTorrent through its XML-RPC API.
"""

import os
import time
import xmlrpc.client
import logging

from . import downloaditem
from . import downloadclient
from . import models

logger = logging.getLogger(__name__)

# rTorrent commands and the item keys they populate
COMMANDS = {
    "hash": "d.hash",
    "name": "d.name",
    "is_private": "d.is_private",
    "size_bytes": "d.size_bytes",
    "completed_bytes": "d.completed_bytes",
    "down_rate": "d.down.rate",
    "ratio": "d.ratio",
    "state": "d.state",
    "complete": "d.complete",
    "timestamp_finished": "d.timestamp.finished",
    "custom1": "d.custom1",
    "base_path": "d.base_path",
    "directory": "d.directory",
}


class RTorrentItem(downloaditem.DownloadItem):
    """
    An rTorrent download, the results of the `d.*` commands.
    """

    @property
    def hash(self):
        return downloaditem.as_str(self.native.get("hash")).upper()

    @property
    def name(self):
        return downloaditem.as_str(self.native.get("name"))

    @property
    def category(self):
        return downloaditem.as_str(self.native.get("custom1"))

    @category.setter
    def category(self, value):
        self.native["custom1"] = value

    @property
    def is_private(self):
        return bool(self.native.get("is_private"))

    @property
    def size(self):
        return self.native.get("size_bytes") or 0

    @property
    def downloaded_bytes(self):
        return self.native.get("completed_bytes") or 0

    @property
    def download_speed(self):
        return self.native.get("down_rate") or 0

    @property
    def eta(self):
        if not self.download_speed:
            return 0
        return max(self.size - self.downloaded_bytes, 0) // self.download_speed

    @property
    def ratio(self):
        # rTorrent reports the ratio multiplied by 1000
        return (self.native.get("ratio") or 0) / 1000.0

    @property
    def seeding_time_seconds(self):
        finished = self.native.get("timestamp_finished") or 0
        if finished <= 0:
            return 0
        return max(time.time() - finished, 0)

    def is_downloading(self):
        return self.native.get("state") == 1 and not self.native.get("complete")

    def is_stalled(self):
        return self.is_downloading() and self.download_speed == 0 and self.eta == 0

    def is_seeding(self):
        return self.native.get("state") == 1 and bool(self.native.get("complete"))


class RTorrentService(downloadclient.DownloadService):
    """
    An rTorrent download client.
    """

    TYPE = "rtorrent"
    CLIENT_EXC_TYPES = (xmlrpc.client.Error, OSError)

    def connect_client(self):
        client = xmlrpc.client.ServerProxy(self.client_config.url)
        logger.debug(
            "Connected to rTorrent %s: %s",
            client.system.client_version(),
            self.name,
        )
        return client

    def get_item(self, item_hash):
        multicall = xmlrpc.client.MultiCall(self.client)
        for command in COMMANDS.values():
            getattr(multicall, command)(item_hash.upper())
        try:
            values = tuple(multicall())
        except xmlrpc.client.Fault as exc:
            logger.debug(
                "failed to find torrent %s in the %s download client: %s",
                item_hash,
                self.name,
                exc,
            )
            return None
        native = dict(zip(COMMANDS.keys(), values))
        return RTorrentItem(native, trackers=self.get_trackers(item_hash))

    def get_trackers(self, item_hash):
        """
        Return the tracker URLs of a download.
        """
        return [
            tracker[0]
            for tracker in self.client.t.multicall(item_hash.upper(), "", "t.url=")
            if tracker and tracker[0]
        ]

    def list_seeding_items(self):
        rows = self.client.d.multicall2(
            "",
            "main",
            *(f"{command}=" for command in COMMANDS.values()),
        )
        items = [RTorrentItem(dict(zip(COMMANDS.keys(), row))) for row in rows or []]
        return [item for item in items if item.hash and item.is_seeding()]

    def get_files(self, item):
        directory = downloaditem.as_str(item.native.get("directory"))
        return [
            models.DownloadFile(
                path=os.path.join(directory, file_path),
                skipped=priority == 0,
            )
            for file_path, priority in self.client.f.multicall(
                item.hash.upper(),
                "",
                "f.path=",
                "f.priority=",
            )
        ]

    def delete_native(self, item_hash, delete_source_files):
        item = self.get_item(item_hash)
        if item is None:
            logger.debug("Download already deleted | %s | %s", item_hash, self.name)
            return
        self.client.d.erase(item.hash)
        if delete_source_files and item.native.get("base_path"):
            downloadclient.delete_files(item.native["base_path"])

    def set_native_category(self, item, category):
        self.client.d.custom1.set(item.hash.upper(), category)
