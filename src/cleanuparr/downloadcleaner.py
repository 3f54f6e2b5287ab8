# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

"""
Clean seeding downloads past their limits and move downloads no longer imported.
"""

import logging

from . import models

logger = logging.getLogger(__name__)


class DownloadCleaner:
    """
    Apply the seeding rules and the unlinked handling to every download client.
    """

    def __init__(self, config, download_services, hardlinks):
        self.config = config
        self.download_services = download_services
        self.hardlinks = hardlinks

    def __repr__(self):
        return f"<{type(self).__name__} {len(self.download_services)!r} clients>"

    @staticmethod
    def error_types(service):
        """
        Return the errors isolated to one download client.
        """
        return service.CLIENT_EXC_TYPES + (OSError,)

    def run(self):
        """
        Clean and re-categorize the seeding downloads of all download clients.
        """
        cleaner_config = self.config.download_cleaner
        results = {}
        seeding = self.get_seeding_downloads()

        if cleaner_config.seeding_rules:
            for service, items in seeding:
                try:
                    cleaned = service.clean_downloads(
                        service.filter_downloads_to_be_cleaned(
                            items,
                            cleaner_config.seeding_rules,
                        ),
                        cleaner_config.seeding_rules,
                    )
                except self.error_types(service) as exc:
                    logger.error(
                        "Failed to clean downloads | %s | %s",
                        exc,
                        service.name,
                    )
                    continue
                if cleaned:
                    results.setdefault("cleaned", {})[service.name] = cleaned
                    items[:] = [item for item in items if item.hash not in cleaned]

        if cleaner_config.unlinked_enabled:
            changed = self.change_unlinked_categories(seeding)
            if changed:
                results["category-changed"] = changed

        return results

    def get_seeding_downloads(self):
        """
        Fetch each download client's seeding downloads once, without ignored ones.
        """
        ignored = self.config.download_ignored_downloads
        seeding = []
        for service in self.download_services:
            try:
                items = service.get_seeding_downloads()
            except self.error_types(service) as exc:
                logger.error(
                    "Failed to get seeding downloads | %s | %s",
                    exc,
                    service.name,
                )
                continue
            kept = []
            for item in items:
                if item.is_ignored(ignored):
                    logger.info("skip | download is ignored | %s", item.name)
                    continue
                kept.append(item)
            seeding.append((service, kept))
        return seeding

    def change_unlinked_categories(self, seeding):
        """
        Move the downloads without hard links, ignored directories indexed once.
        """
        cleaner_config = self.config.download_cleaner
        candidates = []
        for service, items in seeding:
            to_change = service.filter_downloads_to_change_category(
                items,
                cleaner_config.unlinked_categories,
            )
            if to_change:
                candidates.append((service, to_change))
        if not candidates:
            return {}

        if cleaner_config.unlinked_ignored_root_dirs:
            self.hardlinks.populate_file_counts(
                cleaner_config.unlinked_ignored_root_dirs,
            )

        changed = {}
        for service, to_change in candidates:
            try:
                service.create_category(cleaner_config.unlinked_target_category)
                outcomes = service.change_category_for_no_hard_links(to_change)
            except self.error_types(service) as exc:
                logger.error(
                    "Failed to change categories | %s | %s",
                    exc,
                    service.name,
                )
                continue
            orphaned = [
                item_hash
                for item_hash, outcome in outcomes.items()
                if outcome is models.HardLinkOutcome.ORPHANED
            ]
            if orphaned:
                changed[service.name] = orphaned
        return changed
