# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

"""
Remove arr queue items whose downloads are stuck, too slow, or failed to import.
"""

import logging

import arrapi

from . import models

logger = logging.getLogger(__name__)


class QueueCleaner:
    """
    Reconcile each arr instance's queue against the download clients.
    """

    def __init__(self, config, instances, download_services, sink):
        self.config = config
        self.instances = instances
        self.download_services = download_services
        self.sink = sink

    def __repr__(self):
        return f"<{type(self).__name__} {len(self.instances)!r} instances>"

    def run(self):
        """
        Clean the queue of every arr instance, one failing instance doesn't stop others.
        """
        results = {}
        for instance in self.instances:
            try:
                removed = self.clean_instance(instance)
            except arrapi.exceptions.ArrException as exc:
                logger.error("Failed to clean the %s queue: %s", instance.name, exc)
                # A partial queue can't be trusted
                self.sink.discard()
                continue
            if removed:
                results[instance.name] = removed
        return results

    def clean_instance(self, instance):
        """
        Check every queue page of one instance, then process the removals.
        """
        logger.debug("Cleaning the queue of %s", instance.name)
        instance.iterate_queue(
            lambda records: self.process_page(instance, records),
        )
        return self.sink.process()

    def process_page(self, instance, records):
        """
        Check each download of a queue page, all records of a download together.
        """
        groups = {}
        for record in records:
            groups.setdefault(record.download_id.lower(), []).append(record)
        for group in groups.values():
            self.process_download(instance, group)

    def process_download(self, instance, records):  # noqa: V105
        """
        Decide whether the download of these queue records should be removed.
        """
        record = records[0]
        if not all(instance.is_record_valid(each) for each in records):
            return None

        ignored = self.config.queue_ignored_downloads
        if record.download_id.lower() in {pattern.lower() for pattern in ignored}:
            logger.info("skip | download is ignored | %s", record.title)
            return None
        if self.sink.has_marker(record.download_id, instance.url):
            logger.debug("skip | already marked for removal | %s", record.title)
            return None

        result = models.DownloadCheckResult()
        client_error = False
        if record.is_torrent and self.download_services:
            for service in self.download_services:
                result = service.should_remove_from_arr_queue(
                    record.download_id,
                    ignored,
                )
                client_error = client_error or result.error is not None
                if result.found:
                    break
            if not result.found:
                logger.warning(
                    "Download not found in any torrent client | %s",
                    record.title,
                )
                if client_error:
                    return None

        failed_import = self.config.queue_cleaner.failed_import
        if result.should_remove:
            remove_from_client = not result.is_private or result.delete_from_client
            delete_reason = result.delete_reason
        else:
            if result.error is not None:
                return None
            if (
                record.is_torrent
                and self.download_services
                and not result.found
                and failed_import.skip_if_not_found_in_client
            ):
                logger.debug(
                    "skip failed import check | not found in any client | %s",
                    record.title,
                )
                return None
            if not instance.should_remove_from_queue(record, result.is_private):
                return None
            remove_from_client = not result.is_private or failed_import.delete_private
            delete_reason = models.DeleteReason.FAILED_IMPORT

        request = models.RemovalRequest(
            instance=instance,
            record=record,
            search_items=instance.get_search_items(records),
            delete_reason=delete_reason,
            remove_from_client=remove_from_client,
            is_pack=len(records) > 1,
        )
        self.sink.publish(request)
        return request
