# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

"""
Tests covering the download client decisions shared by all protocols.
"""

import os

from unittest import mock

import requests
import qbittorrentapi
import deluge_client.client

from .. import config
from .. import models
from .. import qbittorrent
from .. import deluge
from .. import transmission
from .. import tests

HASH = "ABCDEF0123456789ABCDEF0123456789ABCDEF01"
OTHER_HASH = "0123456789ABCDEF0123456789ABCDEF01234567"


def mock_torrents(*natives):
    """
    Return a Transmission `get_torrents` side effect answering by hash.
    """
    by_hash = {native["hashString"].lower(): native for native in natives}

    def get_torrents(ids=None, arguments=None):  # pylint: disable=unused-argument
        if ids is None:
            return [mock.Mock(fields=native) for native in natives]
        return [
            mock.Mock(fields=by_hash[item_hash])
            for item_hash in ids
            if item_hash in by_hash
        ]

    return get_torrents


@mock.patch.dict(os.environ, tests.CleanuparrTestCase.ENV)
class CleanuparrQueueCheckTests(tests.CleanuparrTestCase):
    """
    Tests covering whether download client state leads to arr queue removal.
    """

    def make_transmission(self, **native):
        """
        Return a Transmission service that knows one downloading torrent.
        """
        native.setdefault("hashString", HASH.lower())
        native.setdefault("name", "Foo.Series.S01E01")
        native.setdefault("status", transmission.STATUS_DOWNLOADING)
        native.setdefault("totalSize", 1000)
        native.setdefault("downloadedEver", 100)
        native.setdefault("rateDownload", 0)
        native.setdefault("eta", -1)
        native.setdefault("downloadDir", str(self.tmp_path))
        native.setdefault("files", [{"name": "Foo.Series.S01E01.mkv"}])
        native.setdefault("fileStats", [{"wanted": True}])
        service = self.make_service(transmission.TransmissionService)
        service.client.get_torrents.side_effect = mock_torrents(native)
        return service

    def make_qbittorrent(self, files=(), **native):
        """
        Return a qBittorrent service that knows one torrent.
        """
        native.setdefault("hash", HASH.lower())
        native.setdefault("name", "Foo.Movie.2023")
        native.setdefault("state", "downloading")
        native.setdefault("save_path", str(self.tmp_path))
        service = self.make_service(qbittorrent.QBitService)
        service.client.torrents_info.return_value = [native]
        service.client.torrents_trackers.return_value = [
            {"url": "** [DHT] **"},
            {"url": "https://tracker.example.org/announce"},
        ]
        service.client.torrents_properties.return_value = {"is_private": False}
        service.client.torrents_files.return_value = list(files)
        return service

    def test_stalled_strikes(self):
        """
        A stalled download is removed when it reaches the stall rule strikes.
        """
        service = self.make_transmission()
        for strike_count in range(1, 3):
            result = service.should_remove_from_arr_queue(HASH, [])
            self.assertTrue(result.found, "Download not found")
            self.assertFalse(
                result.should_remove,
                f"Stalled download removed on strike {strike_count}",
            )
        result = service.should_remove_from_arr_queue(HASH, [])
        self.assertTrue(result.should_remove, "Stalled download not removed")
        self.assertIs(
            result.delete_reason,
            models.DeleteReason.STALLED,
            "Wrong stalled delete reason",
        )
        self.assertTrue(
            result.delete_from_client,
            "Public stalled download not deleted from the client",
        )
        self.assertEqual(
            [event["type"] for event in self.events.events],
            ["strike", "strike", "strike"],
            "Wrong strike events",
        )

    def test_stalled_private(self):
        """
        Private downloads stay in the client unless the rule says otherwise.
        """
        service = self.make_transmission(isPrivate=True)
        for _ in range(3):
            result = service.should_remove_from_arr_queue(HASH, [])
        self.assertTrue(result.should_remove, "Stalled download not removed")
        self.assertTrue(result.is_private, "Private download not flagged")
        self.assertFalse(
            result.delete_from_client,
            "Private stalled download deleted from the client",
        )

    def test_slow_strikes(self):
        """
        A download slower than the slow rule minimum speed is removed.
        """
        service = self.make_transmission(rateDownload=100, eta=3600)
        for _ in range(2):
            result = service.should_remove_from_arr_queue(HASH, [])
            self.assertFalse(result.should_remove, "Slow download removed too early")
        result = service.should_remove_from_arr_queue(HASH, [])
        self.assertTrue(result.should_remove, "Slow download not removed")
        self.assertIs(
            result.delete_reason,
            models.DeleteReason.SLOW_SPEED,
            "Wrong slow delete reason",
        )
        self.assertEqual(
            self.striker.get(HASH, models.StrikeType.STALLED),
            0,
            "Slow download struck as stalled",
        )

    def test_ignored(self):
        """
        Ignored downloads are found but never removed.
        """
        service = self.make_transmission(labels=["keep"])
        for _ in range(3):
            result = service.should_remove_from_arr_queue(HASH, ["KEEP"])
        self.assertTrue(result.found, "Ignored download not found")
        self.assertFalse(result.should_remove, "Ignored download removed")
        self.assertEqual(self.events.events, [], "Ignored download struck")

    def test_not_found(self):
        """
        Downloads unknown to the client are reported as not found.
        """
        service = self.make_transmission()
        result = service.should_remove_from_arr_queue(OTHER_HASH, [])
        self.assertFalse(result.found, "Unknown download found")
        self.assertFalse(result.should_remove, "Unknown download removed")
        self.assertIsNone(result.error, "Unknown download reported as an error")

    def test_client_error(self):
        """
        Errors talking to the download client never lead to removal.
        """
        service = self.make_qbittorrent()
        service.client.torrents_info.side_effect = qbittorrentapi.APIError(
            "Connection refused",
        )
        with self.assertLogs(level="ERROR"):
            result = service.should_remove_from_arr_queue(HASH, [])
        self.assertFalse(result.should_remove, "Download removed on a client error")
        self.assertIn("Connection refused", result.error, "Wrong client error")

    def test_all_files_skipped_by_client(self):
        """
        Downloads qBittorrent finished without wanting any file are removed.
        """
        service = self.make_qbittorrent(
            files=[{"name": "Foo.Movie.2023.mkv", "priority": 0}],
            state="pausedDL",
            completion_on=1700000000,
            downloaded=0,
        )
        result = service.should_remove_from_arr_queue(HASH, [])
        self.assertTrue(result.should_remove, "Skipped download not removed")
        self.assertIs(
            result.delete_reason,
            models.DeleteReason.ALL_FILES_SKIPPED_BY_CLIENT,
            "Wrong skipped by client delete reason",
        )
        self.assertTrue(
            result.delete_from_client,
            "Download skipped by the client not deleted from the client",
        )

    def test_all_files_skipped(self):
        """
        Downloads where the user skipped every file are deleted from the client.
        """
        service = self.make_qbittorrent(
            files=[
                {"name": "Foo.Movie.2023.mkv", "priority": 0},
                {"name": "Foo.Movie.2023.nfo", "priority": 0},
            ],
            downloaded=1000,
        )
        service.client.torrents_properties.return_value = {"is_private": True}
        result = service.should_remove_from_arr_queue(HASH, [])
        self.assertTrue(result.is_private, "Private download not flagged")
        self.assertTrue(result.should_remove, "Skipped download not removed")
        self.assertIs(
            result.delete_reason,
            models.DeleteReason.ALL_FILES_SKIPPED,
            "Wrong skipped delete reason",
        )
        self.assertTrue(
            result.delete_from_client,
            "Private download skipped by the user kept in the client",
        )

    def test_all_files_unwanted(self):
        """
        Downloads with no wanted file are deleted from the client for any protocol.
        """
        service = self.make_transmission(
            fileStats=[{"wanted": False}],
            isPrivate=True,
        )
        result = service.should_remove_from_arr_queue(HASH, [])
        self.assertIs(
            result.delete_reason,
            models.DeleteReason.ALL_FILES_SKIPPED,
            "Wrong unwanted files delete reason",
        )
        self.assertTrue(
            result.delete_from_client,
            "Download with no wanted file kept in the client",
        )

    def test_metadata_strikes(self):
        """
        Downloads stuck fetching their metadata are removed after their strikes.
        """
        service = self.make_qbittorrent(state="metaDL")
        for _ in range(2):
            result = service.should_remove_from_arr_queue(HASH, [])
            self.assertFalse(result.should_remove, "Metadata download removed early")
        result = service.should_remove_from_arr_queue(HASH, [])
        self.assertIs(
            result.delete_reason,
            models.DeleteReason.DOWNLOADING_METADATA,
            "Wrong metadata delete reason",
        )
        self.assertTrue(result.delete_from_client, "Metadata download kept in client")

    def test_connect_retries(self):
        """
        Connecting is retried a few times before giving up.
        """
        service = self.make_qbittorrent()
        service.disconnect()
        with mock.patch.object(
            qbittorrent.QBitService,
            "connect_client",
            side_effect=requests.exceptions.ConnectionError("refused"),
        ) as connect_client, mock.patch("time.sleep"):
            with self.assertRaises(
                requests.exceptions.ConnectionError,
                msg="Connection error not raised",
            ):
                service.client  # pylint: disable=pointless-statement
        self.assertEqual(connect_client.call_count, 3, "Wrong number of attempts")

    def test_port(self):
        """
        Missing ports are guessed from the download client type or the scheme.
        """
        service = self.make_service(deluge.DelugeService, url="deluge://localhost")
        self.assertEqual(service.port, 58846, "Wrong Deluge default port")
        service = self.make_service(qbittorrent.QBitService, url="https://localhost")
        self.assertEqual(service.port, 443, "Wrong HTTPS default port")
        service = self.make_service(qbittorrent.QBitService, url="foo://localhost")
        with self.assertRaises(ValueError, msg="Unknown scheme port guessed"):
            service.port  # pylint: disable=pointless-statement


@mock.patch.dict(os.environ, tests.CleanuparrTestCase.ENV)
class CleanuparrSeedingTests(tests.CleanuparrTestCase):
    """
    Tests covering the cleaning of seeding downloads.
    """

    def make_item(self, item_hash=HASH, **native):
        """
        Return a seeding Deluge item.
        """
        native.setdefault("hash", item_hash.lower())
        native.setdefault("name", f"Download {item_hash[:4]}")
        native.setdefault("state", "Seeding")
        native.setdefault("label", "tv-sonarr")
        native.setdefault("ratio", 0.5)
        native.setdefault("seeding_time", 0)
        return deluge.DelugeItem(native)

    def test_filter_downloads_to_be_cleaned(self):
        """
        Only items with a hash in a category with a seeding rule are kept.
        """
        service = self.make_service(deluge.DelugeService)
        items = [
            self.make_item(label="TV-Sonarr"),
            self.make_item(OTHER_HASH, label="radarr"),
            self.make_item("", label="tv-sonarr"),
            self.make_item(OTHER_HASH, label=""),
        ]
        filtered = service.filter_downloads_to_be_cleaned(
            items,
            [config.SeedingRule(name="tv-sonarr", max_ratio=1)],
        )
        self.assertEqual(filtered, items[:1], "Wrong downloads to be cleaned")

    def test_should_clean(self):
        """
        Ratio limits wait for the minimum seed time, seed time limits don't.
        """
        service = self.make_service(deluge.DelugeService)
        rule = config.SeedingRule(name="tv-sonarr", max_ratio=1, min_seed_time=60)
        item = self.make_item(ratio=2, seeding_time=30 * 60)
        self.assertIsNone(
            service.should_clean(item, rule),
            "Download cleaned before the minimum seed time",
        )
        item = self.make_item(ratio=2, seeding_time=2 * 60 * 60)
        self.assertIs(
            service.should_clean(item, rule),
            models.CleanReason.MAX_RATIO_REACHED,
            "Download not cleaned at the maximum ratio",
        )
        rule = config.SeedingRule(name="tv-sonarr", max_seed_time=60)
        self.assertIs(
            service.should_clean(item, rule),
            models.CleanReason.MAX_SEED_TIME_REACHED,
            "Download not cleaned at the maximum seed time",
        )
        item = self.make_item(ratio=2, seeding_time=30 * 60)
        self.assertIsNone(
            service.should_clean(item, rule),
            "Download cleaned before the maximum seed time",
        )

    def test_clean_downloads(self):
        """
        Downloads over their limits are deleted and reported.
        """
        service = self.make_service(deluge.DelugeService)
        service.client.call.return_value = {"hash": HASH.lower()}
        rules = [
            config.SeedingRule(
                name="tv-sonarr",
                max_ratio=1,
                delete_source_files=False,
            ),
        ]
        items = [self.make_item(ratio=1.5), self.make_item(OTHER_HASH, ratio=0.5)]
        cleaned = service.clean_downloads(items, rules)
        self.assertEqual(cleaned, [HASH.lower()], "Wrong cleaned downloads")
        service.client.call.assert_any_call(
            "core.remove_torrent",
            HASH.lower(),
            False,
        )
        self.assertEqual(
            [event["type"] for event in self.events.events],
            ["download-cleaned"],
            "Wrong download cleaned events",
        )

    def test_clean_downloads_dry_run(self):
        """
        Dry runs don't delete anything.
        """
        service = self.make_service(
            deluge.DelugeService,
            app_config=self.make_config(general={"dry-run": True}),
        )
        with self.assertLogs(level="INFO") as logs:
            service.clean_downloads(
                [self.make_item(ratio=1.5)],
                [config.SeedingRule(name="tv-sonarr", max_ratio=1)],
            )
        service.client.call.assert_not_called()
        self.assertTrue(
            [output for output in logs.output if "[dry run]" in output],
            "Dry run not logged",
        )

    def test_clean_downloads_client_error(self):
        """
        A failing deletion skips the download without stopping the others.
        """
        service = self.make_service(deluge.DelugeService)
        service.client.call.side_effect = [
            {"hash": HASH.lower()},
            deluge_client.client.DelugeClientException("boom"),
            {"hash": OTHER_HASH.lower()},
            None,
        ]
        with self.assertLogs(level="ERROR"):
            cleaned = service.clean_downloads(
                [self.make_item(ratio=2), self.make_item(OTHER_HASH, ratio=2)],
                [config.SeedingRule(name="tv-sonarr", max_ratio=1)],
            )
        self.assertEqual(cleaned, [OTHER_HASH.lower()], "Wrong cleaned downloads")


@mock.patch.dict(os.environ, tests.CleanuparrTestCase.ENV)
class CleanuparrUnlinkedTests(tests.CleanuparrTestCase):
    """
    Tests covering downloads no longer hard linked from the media library.
    """

    def make_config(self, **sections):
        sections.setdefault(
            "download_cleaner",
            {
                "enabled": True,
                "unlinked-enabled": True,
                "unlinked-categories": ["tv-sonarr"],
            },
        )
        return super().make_config(**sections)

    def make_native(self, item_hash, file_name, wanted=True):
        """
        Return the Transmission fields of a download with one file.
        """
        return {
            "hashString": item_hash.lower(),
            "name": file_name,
            "labels": ["tv-sonarr"],
            "status": transmission.STATUS_SEEDING,
            "downloadDir": str(self.tmp_path / "downloads"),
            "files": [{"name": file_name}],
            "fileStats": [{"wanted": wanted}],
        }

    def test_orphaned_category_changed(self):
        """
        Orphaned downloads are moved to the unlinked category, linked ones aren't.
        """
        orphaned = self.write_file("downloads", "Foo.S01E01.mkv")
        linked = self.write_file("downloads", "Foo.S01E02.mkv")
        library = self.write_file("library", "placeholder")
        os.link(linked, library.parent / "Foo.S01E02.mkv")
        natives = [
            self.make_native(HASH, orphaned.name),
            self.make_native(OTHER_HASH, linked.name),
        ]
        service = self.make_service(transmission.TransmissionService)
        service.client.get_torrents.side_effect = mock_torrents(*natives)
        items = [transmission.TransmissionItem(native) for native in natives]

        outcomes = service.change_category_for_no_hard_links(items)

        self.assertEqual(
            outcomes,
            {
                HASH.lower(): models.HardLinkOutcome.ORPHANED,
                OTHER_HASH.lower(): models.HardLinkOutcome.LINKED,
            },
            "Wrong hard link outcomes",
        )
        service.client.change_torrent.assert_called_once_with(
            ids=[HASH.lower()],
            labels=["cleanuparr-unlinked"],
        )
        self.assertEqual(
            items[0].category,
            "cleanuparr-unlinked",
            "Orphaned item category not updated",
        )
        self.assertEqual(
            [event["type"] for event in self.events.events],
            ["category-changed"],
            "Wrong category changed events",
        )

    def test_missing_and_skipped_files(self):
        """
        Downloads with missing or only skipped files are left alone.
        """
        natives = [
            self.make_native(HASH, "Missing.mkv"),
            self.make_native(OTHER_HASH, "Skipped.mkv", wanted=False),
        ]
        service = self.make_service(transmission.TransmissionService)
        service.client.get_torrents.side_effect = mock_torrents(*natives)
        outcomes = service.change_category_for_no_hard_links(
            [transmission.TransmissionItem(native) for native in natives],
        )
        self.assertEqual(
            outcomes,
            {
                HASH.lower(): models.HardLinkOutcome.NOT_FOUND,
                OTHER_HASH.lower(): models.HardLinkOutcome.NO_FILES,
            },
            "Wrong hard link outcomes",
        )
        service.client.change_torrent.assert_not_called()

    def test_tags(self):
        """
        qBittorrent can tag unlinked downloads instead of changing the category.
        """
        self.write_file("downloads", "Foo.S01E01.mkv")
        app_config = self.make_config(
            download_cleaner={
                "enabled": True,
                "unlinked-enabled": True,
                "unlinked-use-tag": True,
                "unlinked-categories": ["tv-sonarr"],
            },
        )
        service = self.make_service(qbittorrent.QBitService, app_config=app_config)
        service.client.torrents_files.return_value = [{"name": "Foo.S01E01.mkv"}]
        item = qbittorrent.QBitItem(
            {
                "hash": HASH.lower(),
                "name": "Foo.S01E01",
                "category": "tv-sonarr",
                "save_path": str(self.tmp_path / "downloads"),
            },
        )
        tagged = qbittorrent.QBitItem(
            {
                "hash": OTHER_HASH.lower(),
                "name": "Foo.S01E02",
                "category": "tv-sonarr",
                "tags": "Cleanuparr-Unlinked",
            },
        )

        self.assertEqual(
            service.filter_downloads_to_change_category(
                [item, tagged],
                ["tv-sonarr"],
            ),
            [item],
            "Tagged download not filtered",
        )
        service.create_category("cleanuparr-unlinked")
        service.client.torrents_create_category.assert_not_called()

        outcomes = service.change_category_for_no_hard_links([item])
        self.assertIs(
            outcomes[HASH.lower()],
            models.HardLinkOutcome.ORPHANED,
            "Wrong tagged download outcome",
        )
        service.client.torrents_add_tags.assert_called_once_with(
            tags="cleanuparr-unlinked",
            torrent_hashes=HASH.lower(),
        )
        service.client.torrents_set_category.assert_not_called()
        self.assertEqual(item.category, "tv-sonarr", "Tagged download category changed")

    def test_create_category(self):
        """
        Categories are only created when missing, ignoring case.
        """
        service = self.make_service(qbittorrent.QBitService)
        service.client.torrents_categories.return_value = {"Cleanuparr-Unlinked": {}}
        service.create_category("cleanuparr-unlinked")
        service.client.torrents_create_category.assert_not_called()
        service.create_category("tv-unlinked")
        service.client.torrents_create_category.assert_called_once_with(
            name="tv-unlinked",
        )
