# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

"""
Cleanuparr interaction with download clients, shared by all protocols.
"""

import shutil
import pathlib
import urllib.parse
import logging

import tenacity

from . import models
from . import utils

logger = logging.getLogger(__name__)


class DownloadService:  # pylint: disable=too-many-public-methods
    """
    An individual, specific download client that Cleanuparr interacts with.

    Sub-classes implement the protocol specific methods, the decisions shared by all
    protocols are implemented here.
    """

    TYPE = None
    # The exceptions the download client library raises for failed requests
    CLIENT_EXC_TYPES = ()
    SUPPORTS_TAGS = False
    # Default port when the URL has none
    DEFAULT_PORT = None

    _client = None

    def __init__(  # pylint: disable=too-many-arguments
        self,
        client_config,
        config,
        events,
        striker=None,
        rule_evaluator=None,
        hardlinks=None,
    ):
        """
        Capture the download client configuration and shared collaborators.
        """
        self.client_config = client_config
        self.config = config
        self.events = events
        self.striker = striker
        self.rule_evaluator = rule_evaluator
        self.hardlinks = hardlinks

    def __repr__(self):
        """
        Readable, informative, and specific representation to ease debugging.
        """
        return f"<{type(self).__name__} {self.name!r}>"

    @property
    def name(self):
        """
        The configured name of this download client.
        """
        return self.client_config.name

    @property
    def dry_run(self):
        """
        Whether destructive calls should only be logged.
        """
        return self.config.general.dry_run

    @property
    def split_url(self):
        """
        Return the parsed download client URL including any embedded credentials.
        """
        return urllib.parse.urlsplit(self.client_config.url)

    @property
    def port(self):
        """
        Return the download client port, guessed from the scheme when missing.
        """
        split_url = self.split_url
        if split_url.port:
            return split_url.port
        if self.DEFAULT_PORT is not None:
            return self.DEFAULT_PORT
        if split_url.scheme == "http":
            return 80
        if split_url.scheme == "https":
            return 443
        raise ValueError(f"Could not guess port from URL: {self.client_config.url}")

    @property
    def client(self):
        """
        Return the download client library client, connecting on first use.
        """
        if self._client is None:
            self.connect()
        return self._client

    @tenacity.retry(
        retry=tenacity.retry_if_exception_type(utils.RETRY_EXC_TYPES),
        wait=tenacity.wait_fixed(1),
        stop=tenacity.stop_after_attempt(3),
        reraise=True,
        before_sleep=tenacity.before_sleep_log(logger, logging.DEBUG),
    )
    def connect(self):
        """
        Connect and log in to the download client, waiting for reconnection on error.
        """
        logger.debug("Connecting to download client: %s", self.name)
        self._client = self.connect_client()
        return self._client

    def disconnect(self):
        """
        Drop the connection so the next use reconnects.
        """
        self._client = None

    # Protocol specific methods

    def connect_client(self):
        """
        Return a new connected download client library client.
        """
        raise NotImplementedError

    def get_item(self, item_hash):
        """
        Return the download item for the hash, `None` if the client doesn't know it.
        """
        raise NotImplementedError

    def list_seeding_items(self):
        """
        Return all download items that the client reports as complete or seeding.
        """
        raise NotImplementedError

    def get_files(self, item):
        """
        Return the `models.DownloadFile` list of the item with absolute paths.
        """
        raise NotImplementedError

    def get_categories(self):
        """
        Return the names of the categories defined in the download client.
        """
        return []

    def create_native_category(self, name):
        """
        Create a category in the download client, a no-op by default.
        """
        logger.debug(
            "Download client doesn't support creating categories | %s | %s",
            name,
            self.name,
        )

    def delete_native(self, item_hash, delete_source_files):
        """
        Remove the download item from the download client.
        """
        raise NotImplementedError

    def set_native_category(self, item, category):
        """
        Persist a new category for the download item in the download client.
        """
        raise NotImplementedError

    def add_native_tag(self, item, tag):
        """
        Add a tag to the download item in the download client.
        """
        raise NotImplementedError(
            f"The {self.TYPE} download client doesn't support tags",
        )

    def skipped_files_reason(self, item, files):
        """
        Return the delete reason and client deletion if all files are skipped.
        """
        if files and all(item_file.skipped for item_file in files):
            logger.debug("all files are unwanted | removing download | %s", item.name)
            return models.DeleteReason.ALL_FILES_SKIPPED, True
        return None

    # Seeding and unlinked downloads

    def get_seeding_downloads(self):
        """
        Return the seeding download items, never including items without a hash.
        """
        items = self.list_seeding_items() or []
        return [item for item in items if item.hash]

    def filter_downloads_to_be_cleaned(self, items, rules):
        """
        Keep the items whose category has a seeding rule.
        """
        names = {rule.name.lower() for rule in rules}
        return [
            item
            for item in items
            if item.hash and item.category and item.category.lower() in names
        ]

    @property
    def use_tag(self):
        """
        Whether unlinked downloads get a tag rather than a new category.
        """
        return self.SUPPORTS_TAGS and self.config.download_cleaner.unlinked_use_tag

    def filter_downloads_to_change_category(self, items, categories):
        """
        Keep the items in one of the unlinked categories not yet processed.
        """
        names = {category.lower() for category in categories}
        target = self.config.download_cleaner.unlinked_target_category.lower()
        filtered = []
        for item in items:
            if not item.hash or not item.category:
                continue
            if item.category.lower() not in names:
                continue
            if self.use_tag and target in {tag.lower() for tag in item.tags}:
                continue
            filtered.append(item)
        return filtered

    @utils.dry_run_aware
    def create_category(self, name):
        """
        Create the category unless it already exists, ignoring case.
        """
        if self.use_tag:
            return
        existing = {category.lower() for category in self.get_categories()}
        if name.lower() in existing:
            logger.debug("Category already exists | %s | %s", name, self.name)
            return
        logger.info("Creating category | %s | %s", name, self.name)
        self.create_native_category(name)

    @utils.dry_run_aware
    def delete_download(self, item, delete_source_files):
        """
        Remove the download item from the download client, missing items are fine.
        """
        item_hash = item if isinstance(item, str) else item.hash
        logger.info(
            "Deleting download | delete files: %s | %s | %s",
            delete_source_files,
            item_hash,
            self.name,
        )
        self.delete_native(item_hash, delete_source_files)

    @utils.dry_run_aware
    def change_category(self, item, category):
        """
        Move the item to the unlinked category or tag it.
        """
        if self.use_tag:
            self.add_native_tag(item, category)
        else:
            self.set_native_category(item, category)
            item.category = category
        return category

    def change_category_for_no_hard_links(self, items):
        """
        Move downloads no longer hard linked from the media library.

        Returns the outcome for each item hash.
        """
        target = self.config.download_cleaner.unlinked_target_category
        ignore_root_dir = bool(self.config.download_cleaner.unlinked_ignored_root_dirs)
        outcomes = {}
        for item in items:
            if not item.hash or not item.name or not item.category:
                continue
            outcomes[item.hash] = outcome = self.check_hard_links(item, ignore_root_dir)
            if outcome is not models.HardLinkOutcome.ORPHANED:
                continue
            old_category = item.category
            try:
                self.change_category(item, target)
            except self.CLIENT_EXC_TYPES as exc:
                logger.error(
                    "Failed to change category | %s | %s | %s",
                    exc,
                    item.name,
                    self.name,
                )
                outcomes[item.hash] = models.HardLinkOutcome.ERROR
                continue
            self.events.publish_category_changed(item, self.name, old_category, target)
        return outcomes

    def check_hard_links(self, item, ignore_root_dir=False):
        """
        Return whether any file of the item is still linked elsewhere.
        """
        try:
            files = self.get_files(item)
        except self.CLIENT_EXC_TYPES as exc:
            logger.error(
                "Failed to list files | %s | %s | %s",
                exc,
                item.name,
                self.name,
            )
            return models.HardLinkOutcome.ERROR

        counted = [item_file for item_file in files if not item_file.skipped]
        if not counted:
            logger.debug("skip | no files found | %s", item.name)
            return models.HardLinkOutcome.NO_FILES
        for item_file in counted:
            link_count = self.hardlinks.get_hard_link_count(
                item_file.path,
                ignore_root_dir,
            )
            if link_count < 0:
                logger.debug(
                    "skip | file not found | %s | %s",
                    item_file.path,
                    item.name,
                )
                return models.HardLinkOutcome.NOT_FOUND
            if link_count > 1:
                logger.debug("skip | download has hard links | %s", item.name)
                return models.HardLinkOutcome.LINKED
        logger.info("Download has no hard links | %s", item.name)
        return models.HardLinkOutcome.ORPHANED

    def should_clean(self, item, rule):
        """
        Return the clean reason if the seeding item exceeded the rule limits.
        """
        seeding_minutes = item.seeding_time_seconds / 60
        if rule.max_ratio >= 0:
            if rule.min_seed_time > 0 and seeding_minutes < rule.min_seed_time:
                logger.debug("skip | min seed time not reached | %s", item.name)
            elif item.ratio >= rule.max_ratio:
                return models.CleanReason.MAX_RATIO_REACHED
        if rule.max_seed_time >= 0 and seeding_minutes >= rule.max_seed_time:
            return models.CleanReason.MAX_SEED_TIME_REACHED
        return None

    def clean_downloads(self, items, rules):
        """
        Delete the seeding items that reached the limits of their seeding rule.
        """
        cleaned = []
        for item in items:
            if not item.hash:
                continue
            matching = [rule for rule in rules if rule.matches(item)]
            if not matching:
                logger.debug("skip | no seeding rule matched | %s", item.name)
                continue
            rule = matching[0]
            clean_reason = self.should_clean(item, rule)
            if clean_reason is None:
                continue
            try:
                self.delete_download(item, rule.delete_source_files)
            except self.CLIENT_EXC_TYPES as exc:
                logger.error(
                    "Failed to clean download | %s | %s | %s",
                    exc,
                    item.name,
                    self.name,
                )
                continue
            logger.info(
                "download cleaned | %s reached | delete files: %s | %s",
                clean_reason.value,
                rule.delete_source_files,
                item.name,
            )
            self.events.publish_download_cleaned(
                item,
                self.name,
                rule.name,
                clean_reason,
                rule.delete_source_files,
            )
            cleaned.append(item.hash)
        return cleaned

    # Arr queue checks

    def should_remove_from_arr_queue(self, item_hash, ignored_patterns):
        """
        Check the download client state of an arr queue item.

        Errors talking to the download client are logged and never lead to removal.
        """
        result = models.DownloadCheckResult()
        try:
            item = self.get_item(item_hash)
        except self.CLIENT_EXC_TYPES as exc:
            logger.error(
                "Failed to get download | %s | %s | %s",
                exc,
                item_hash,
                self.name,
            )
            result.error = str(exc)
            return result
        if item is None:
            logger.debug(
                "failed to find torrent %s in the %s download client",
                item_hash,
                self.name,
            )
            return result

        result.found = True
        try:
            result.is_private = item.is_private
            if item.is_ignored(ignored_patterns):
                logger.info("skip | download is ignored | %s", item.name)
                return result
            return self.check_download(item, result)
        except self.CLIENT_EXC_TYPES as exc:
            logger.error(
                "Failed to check download | %s | %s | %s",
                exc,
                item.name,
                self.name,
            )
            result.error = str(exc)
            result.should_remove = False
            return result

    def check_download(self, item, result):
        """
        Apply the file, metadata, slow, and stall checks in order.
        """
        skipped = self.skipped_files_reason(item, self.get_files(item))
        if skipped is not None:
            delete_reason, delete_from_client = skipped
            return result.remove(delete_reason, delete_from_client)

        if item.is_metadata_downloading():
            if self.striker.strike_and_check_limit(
                item.hash,
                item.name,
                self.config.queue_cleaner.downloading_metadata_max_strikes,
                models.StrikeType.DOWNLOADING_METADATA,
            ):
                return result.remove(models.DeleteReason.DOWNLOADING_METADATA, True)
            return result

        if item.is_downloading() and item.download_speed > 0:
            rule_result = self.rule_evaluator.evaluate_slow_rules(item)
            if rule_result.should_remove:
                return result.remove(
                    rule_result.delete_reason,
                    rule_result.delete_from_client,
                )

        if item.is_stalled():
            rule_result = self.rule_evaluator.evaluate_stall_rules(item)
            if rule_result.should_remove:
                return result.remove(
                    rule_result.delete_reason,
                    rule_result.delete_from_client,
                )

        return result


def delete_files(path):
    """
    Delete a download item's files from the filesystem.
    """
    path = pathlib.Path(path)
    if not path.exists():
        logger.debug("Nothing to delete: %s", path)
        return
    logger.info("Deleting files: %s", path)
    if path.is_dir():
        shutil.rmtree(path, onerror=log_rmtree_error)
    else:
        path.unlink()


def log_rmtree_error(function, path, excinfo):  # pragma: no cover
    """
    Inform the user on errors deleting item files but also proceed to delete the rest.

    Error handler for `shutil.rmtree`.
    """
    logger.error(
        "Error removing %r (%s)",
        path,
        ".".join((function.__module__, function.__name__)),
        exc_info=excinfo,
    )
