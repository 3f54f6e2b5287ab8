# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

"""
Issue each queue item removal once per download and arr instance.
"""

import time
import logging

import arrapi

from . import models

logger = logging.getLogger(__name__)


class QueueItemRemover:
    """
    Remove a queue item from its arr instance and search for a replacement.
    """

    def __init__(self, striker, events):
        self.striker = striker
        self.events = events

    def remove(self, request):
        """
        Delete the queue item, then search again unless the download is recurring.
        """
        record = request.record
        instance = request.instance
        try:
            instance.delete_queue_item(record, request.remove_from_client)
        except arrapi.exceptions.NotFound:
            logger.info(
                "Queue item might have already been deleted | %s | %s",
                record.title,
                instance.name,
            )
            return False
        self.events.publish_queue_item_deleted(request)
        self.striker.forget(record.download_id)

        if self.striker.is_recurring(record.download_id):
            self.events.publish_search_not_triggered(
                record.download_id,
                instance.name,
                record.title,
            )
            self.striker.forget_recurring(record.download_id)
            return True
        instance.search(request.search_items)
        return True


class RemovalSink:
    """
    Queue removal requests guarded by per download and instance markers.

    Markers are set with an atomic `dict.setdefault()` when publishing so a second
    publish for the same pair, even one that passed an earlier marker check, is
    dropped.  Markers are cleared once the request has been processed.
    """

    def __init__(self, remover):
        self.remover = remover
        self.markers = {}
        self.pending = []

    def __repr__(self):
        return f"<{type(self).__name__} {len(self.pending)!r} pending>"

    def has_marker(self, download_id, instance_url):
        """
        Return True if a removal is already requested for the pair.
        """
        return models.removal_key(download_id, instance_url) in self.markers

    def publish(self, request):
        """
        Queue the request unless one is already pending for the same pair.
        """
        marker = time.time()
        if self.markers.setdefault(request.key, marker) is not marker:
            logger.debug(
                "Removal already requested, not publishing again | %s | %s",
                request.record.title,
                request.instance.name,
            )
            return False
        logger.info(
            "Removal requested | %s | %s | %s",
            request.delete_reason.value,
            request.record.title,
            request.instance.name,
        )
        self.pending.append(request)
        return True

    def discard(self):
        """
        Drop the pending removals and their markers without running them.
        """
        for request in self.pending:
            logger.debug("Removal discarded | %s", request.record.title)
            self.markers.pop(request.key, None)
        self.pending = []

    def process(self):
        """
        Run the pending removals, a failure doesn't stop the others.
        """
        results = []
        pending, self.pending = self.pending, []
        for request in pending:
            try:
                if self.remover.remove(request):
                    results.append(request.record.download_id)
            except arrapi.exceptions.ArrException as exc:
                logger.error(
                    "Failed to remove queue item | %s | %s | %s",
                    exc,
                    request.record.title,
                    request.instance.name,
                )
            finally:
                self.markers.pop(request.key, None)
        return results
