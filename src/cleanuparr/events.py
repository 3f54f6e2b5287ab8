# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

"""
Record and log what Cleanuparr did during a run.
"""

import time
import logging

logger = logging.getLogger(__name__)


class EventPublisher:
    """
    Log events and keep them for the run so the command-line can report them.
    """

    def __init__(self):
        self.events = []

    def __repr__(self):
        return f"<{type(self).__name__} {len(self.events)!r} events>"

    def publish(self, event_type, message, level=logging.INFO, **data):
        """
        Log one event and append it to the events of this run.
        """
        event = dict(data, type=event_type, message=message, time=time.time())
        logger.log(level, "%s | %s", event_type, message)
        self.events.append(event)
        return event

    def publish_strike(self, item_hash, name, strike_type, strike_count):
        """
        A download got one more strike.
        """
        return self.publish(
            "strike",
            f"Item on strike number {strike_count} | reason {strike_type.value} "
            f"| {name}",
            hash=item_hash,
            name=name,
            strike_type=strike_type.value,
            strike_count=strike_count,
        )

    def publish_recurring_item(self, item_hash, name, strike_count):
        """
        A download that was already removed came back and struck out again.
        """
        return self.publish(
            "recurring-item",
            f"Download keeps coming back after deletion | {name}",
            level=logging.WARNING,
            hash=item_hash,
            name=name,
            strike_count=strike_count,
        )

    def publish_queue_item_deleted(self, request):
        """
        An arr queue item has been removed.
        """
        return self.publish(
            "queue-item-deleted",
            f"Queue item deleted | {request.delete_reason.value} "
            f"| {request.record.title}",
            hash=request.record.download_id,
            instance=request.instance.name,
            delete_reason=request.delete_reason.value,
            remove_from_client=request.remove_from_client,
        )

    def publish_search_not_triggered(self, item_hash, instance_name, title):
        """
        No search was sent for a recurring download.
        """
        return self.publish(
            "search-not-triggered",
            f"Search not triggered for recurring download | {title}",
            level=logging.WARNING,
            hash=item_hash,
            instance=instance_name,
            name=title,
        )

    def publish_download_cleaned(  # pylint: disable=too-many-arguments
        self,
        item,
        client_name,
        category,
        clean_reason,
        delete_source_files,
    ):
        """
        A seeding download has been deleted from its download client.
        """
        return self.publish(
            "download-cleaned",
            f"Download cleaned | {clean_reason.value} reached "
            f"| delete files: {delete_source_files} | {item.name}",
            hash=item.hash,
            name=item.name,
            client=client_name,
            category=category,
            clean_reason=clean_reason.value,
            ratio=item.ratio,
            seeding_time_seconds=item.seeding_time_seconds,
        )

    def publish_category_changed(self, item, client_name, old_category, new_category):
        """
        An orphaned download has been moved to the unlinked category or tag.
        """
        return self.publish(
            "category-changed",
            f"Category changed from {old_category!r} to {new_category!r} "
            f"| {item.name}",
            hash=item.hash,
            name=item.name,
            client=client_name,
            old_category=old_category,
            new_category=new_category,
        )

    def clear(self):
        """
        Forget the events of the previous run.
        """
        self.events = []

    def summary(self):
        """
        Return the events of the run grouped by type, for the command-line output.
        """
        results = {}
        for event in self.events:
            results.setdefault(event["type"], []).append(
                {
                    key: value
                    for key, value in event.items()
                    if key not in {"type", "time"}
                },
            )
        return results
