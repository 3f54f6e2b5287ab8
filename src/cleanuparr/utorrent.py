# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

"""
Cleanuparr interaction with uTorrent through its Web UI API.
"""

import os
import re
import time
import logging

import requests

from . import downloaditem
from . import downloadclient
from . import models

logger = logging.getLogger(__name__)

TOKEN_RE = re.compile(r"""<div[^>]*id=['"]token['"][^>]*>([^<]+)</div>""")

# Torrent status bits
STARTED = 1
CHECKING = 2
START_AFTER_CHECK = 4
CHECKED = 8
ERROR = 16
PAUSED = 32
QUEUED = 64
LOADED = 128

# Positions in the `list=1` torrent arrays
HASH = 0
STATUS = 1
NAME = 2
SIZE = 3
PROGRESS = 4
DOWNLOADED = 5
UPLOADED = 6
RATIO = 7
UPLOAD_SPEED = 8
DOWNLOAD_SPEED = 9
ETA = 10
LABEL = 11
REMAINING = 18
DATE_COMPLETED = 24
SAVE_PATH = 26

# Positions in the `getfiles` file arrays
FILE_NAME = 0
FILE_PRIORITY = 3


class UTorrentError(Exception):
    """
    The uTorrent Web UI returned something unexpected.
    """


class UTorrentAPI:
    """
    Minimal uTorrent Web UI client, token and cookie based.
    """

    def __init__(self, url, username=None, password=None, timeout=100):
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        if username:
            self.session.auth = (username, password or "")
        self.token = None

    def __repr__(self):
        return f"<{type(self).__name__} {self.url!r}>"

    def login(self):
        """
        Get a new token from the Web UI, the session keeps the `GUID` cookie.
        """
        response = self.session.get(f"{self.url}/gui/token.html", timeout=self.timeout)
        response.raise_for_status()
        match = TOKEN_RE.search(response.text)
        if match is None:
            raise UTorrentError(f"Could not extract token from {self.url}")
        self.token = match.group(1).strip()
        return self.token

    def request(self, *params):
        """
        Call the Web UI API with the given query parameters, re-authenticating once.
        """
        if self.token is None:
            self.login()
        for attempt in range(2):
            response = self.session.get(
                f"{self.url}/gui/",
                params=[("token", self.token)] + list(params),
                timeout=self.timeout,
            )
            if response.status_code in (400, 401) and not attempt:
                logger.debug("Refreshing uTorrent token: %s", self.url)
                self.login()
                continue
            response.raise_for_status()
            return response.json()
        raise UTorrentError(f"Could not authenticate with {self.url}")

    def list_torrents(self):
        """
        Return the torrent arrays and the labels.
        """
        response = self.request(("list", "1"))
        return response.get("torrents") or [], response.get("label") or []

    def get_files(self, item_hash):
        """
        Return the file arrays of a torrent.
        """
        response = self.request(("action", "getfiles"), ("hash", item_hash))
        files = response.get("files") or []
        if len(files) < 2:
            return []
        return files[1] or []

    def get_props(self, item_hash):
        """
        Return the properties of a torrent, empty if unknown.
        """
        response = self.request(("action", "getprops"), ("hash", item_hash))
        props = response.get("props") or []
        return props[0] if props else {}

    def remove(self, item_hash, delete_data):
        """
        Remove a torrent, optionally with its data.
        """
        action = "removedatatorrent" if delete_data else "removetorrent"
        return self.request(("action", action), ("hash", item_hash))

    def set_label(self, item_hash, label):
        """
        Set the label of a torrent.
        """
        return self.request(
            ("action", "setprops"),
            ("hash", item_hash),
            ("s", "label"),
            ("v", label),
        )


class UTorrentItem(downloaditem.DownloadItem):
    """
    A uTorrent `list=1` torrent array and its properties.
    """

    def __init__(self, native, props=None):
        props = props or {}
        trackers = [
            tracker.strip()
            for tracker in downloaditem.as_str(props.get("trackers")).splitlines()
            if tracker.strip()
        ]
        super().__init__(native, trackers=trackers)
        self.native = list(native)
        self.props = props

    def field(self, index, default=None):
        """
        Return one position of the torrent array.
        """
        if index < len(self.native):
            return self.native[index]
        return default

    @property
    def hash(self):
        return downloaditem.as_str(self.field(HASH))

    @property
    def name(self):
        return downloaditem.as_str(self.field(NAME))

    @property
    def category(self):
        return downloaditem.as_str(self.field(LABEL))

    @category.setter
    def category(self, value):
        while len(self.native) <= LABEL:
            self.native.append(None)
        self.native[LABEL] = value

    @property
    def is_private(self):
        # uTorrent disables peer exchange for private torrents
        return self.props.get("pex") == -1

    @property
    def size(self):
        return self.field(SIZE, 0) or 0

    @property
    def downloaded_bytes(self):
        return self.field(DOWNLOADED, 0) or 0

    @property
    def completion_percentage(self):
        progress = self.field(PROGRESS)
        if not self.size or progress is None:
            return super().completion_percentage
        # Permille
        return min(progress / 10.0, 100.0)

    @property
    def download_speed(self):
        return self.field(DOWNLOAD_SPEED, 0) or 0

    @property
    def eta(self):
        return self.field(ETA, 0) or 0

    @property
    def ratio(self):
        return (self.field(RATIO, 0) or 0) / 1000.0

    @property
    def seeding_time_seconds(self):
        date_completed = self.field(DATE_COMPLETED, 0) or 0
        if date_completed <= 0:
            return 0
        return max(time.time() - date_completed, 0)

    @property
    def status(self):
        """
        The uTorrent status bit field.
        """
        return self.field(STATUS, 0) or 0

    def is_active(self):
        """
        Return True if started, checked, and not in error.
        """
        return bool(
            self.status & STARTED and self.status & CHECKED and not self.status & ERROR
        )

    def is_complete(self):
        """
        Return True if all wanted files are downloaded, progress is in per mille.
        """
        return (self.field(PROGRESS, 0) or 0) >= 1000

    def is_downloading(self):
        return self.is_active() and not self.is_complete()

    def is_stalled(self):
        return self.is_downloading() and self.download_speed == 0 and self.eta == 0

    def is_seeding(self):
        return self.is_active() and self.is_complete()


class UTorrentService(downloadclient.DownloadService):
    """
    A uTorrent download client.
    """

    TYPE = "utorrent"
    CLIENT_EXC_TYPES = (requests.exceptions.RequestException, UTorrentError, ValueError)

    def connect_client(self):
        split_url = self.split_url
        client = UTorrentAPI(
            split_url._replace(netloc=f"{split_url.hostname}:{self.port}").geturl(),
            username=split_url.username,
            password=split_url.password,
            timeout=self.config.general.http_timeout,
        )
        client.login()
        return client

    def find_torrent(self, item_hash):
        """
        Return the torrent array for the hash, `None` if uTorrent doesn't know it.
        """
        torrents, _ = self.client.list_torrents()
        for torrent in torrents:
            if torrent and str(torrent[HASH]).lower() == item_hash.lower():
                return torrent
        return None

    def get_item(self, item_hash):
        torrent = self.find_torrent(item_hash)
        if torrent is None:
            return None
        return UTorrentItem(torrent, self.client.get_props(torrent[HASH]))

    def list_seeding_items(self):
        torrents, _ = self.client.list_torrents()
        items = []
        for torrent in torrents:
            item = UTorrentItem(torrent)
            if not item.hash or not item.is_seeding():
                continue
            items.append(UTorrentItem(torrent, self.client.get_props(item.hash)))
        return items

    def get_files(self, item):
        save_path = downloaditem.as_str(item.field(SAVE_PATH))
        return [
            models.DownloadFile(
                path=os.path.join(save_path, item_file[FILE_NAME]),
                skipped=item_file[FILE_PRIORITY] == 0,
            )
            for item_file in self.client.get_files(item.hash.upper())
        ]

    def get_categories(self):
        _, labels = self.client.list_torrents()
        return [label[0] for label in labels if label]

    def delete_native(self, item_hash, delete_source_files):
        if self.find_torrent(item_hash) is None:
            logger.debug("Download already deleted | %s | %s", item_hash, self.name)
            return
        self.client.remove(item_hash.upper(), delete_source_files)

    def set_native_category(self, item, category):
        self.client.set_label(item.hash.upper(), category)
