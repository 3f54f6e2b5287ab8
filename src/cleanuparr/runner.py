# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

"""
Run Cleanuparr jobs across multiple arr instances and download clients.
"""

import gc
import time
import pathlib
import logging

import arrapi

from . import config
from . import events
from . import striker
from . import rules
from . import hardlinks
from . import removal
from . import services
from . import servarr
from . import queuecleaner
from . import downloadcleaner
from . import utils

logger = logging.getLogger(__name__)


class CleanuparrRunner:  # pylint: disable=too-many-instance-attributes
    """
    Run Cleanuparr sub-commands across multiple arr instances and download clients.

    Strike counters, recurring downloads, removal markers, and download progress
    are kept for the life of the runner, across daemon loops.
    """

    EXAMPLE_CONFIG = (
        pathlib.Path(__file__).parent / "home" / ".config" / "cleanuparr.yml"
    )
    DEFAULT_POLL = 300

    config = None
    quiet = False

    def __init__(self, config):  # pylint: disable=redefined-outer-name
        """
        Capture a reference to the Cleanuparr configuration file.
        """
        self.config_file = pathlib.Path(config)

        # Initialize any local instance state
        self.events = events.EventPublisher()
        self.striker = striker.Striker(self.events)
        self.hardlinks = hardlinks.HardLinkFileService()
        self.sink = removal.RemovalSink(
            removal.QueueItemRemover(self.striker, self.events),
        )
        self.rule_evaluator = None
        self.download_services = {}
        self.instances = {}

    def __repr__(self):
        return f"<{type(self).__name__} {str(self.config_file)!r}>"

    def update(self):
        """
        Refresh the configuration from the file and rebuild the clients from it.
        """
        self.config = config.Config.load(self.config_file)

        if self.rule_evaluator is None:
            self.rule_evaluator = rules.RuleEvaluator(
                self.striker,
                self.config.queue_cleaner,
            )
        else:
            # Preserve the download progress observed in previous loops
            self.rule_evaluator.queue_config = self.config.queue_cleaner

        self.download_services = {
            client_config.name: services.create_download_service(
                client_config,
                self.config,
                events=self.events,
                striker=self.striker,
                rule_evaluator=self.rule_evaluator,
                hardlinks=self.hardlinks,
            )
            for client_config in self.config.download_clients
            if client_config.enabled
        }
        self.instances = {
            arr_config.name: servarr.create_arr_instance(
                arr_config,
                self.config,
                striker=self.striker,
            )
            for arr_config in self.config.arrs
            if arr_config.enabled
        }
        return self.config

    def connected_services(self):
        """
        Return the download services that could connect, logging the others.
        """
        connected = []
        for name, service in self.download_services.items():
            try:
                service.client  # pylint: disable=pointless-statement
            except utils.RETRY_EXC_TYPES + service.CLIENT_EXC_TYPES as exc:
                logger.error(
                    "Failed to connect to download client %s: %s",
                    name,
                    exc,
                    extra={"runner": self},
                )
                continue
            connected.append(service)
        return connected

    def connected_instances(self):
        """
        Return the arr instances that could connect, logging the others.
        """
        connected = []
        for name, instance in self.instances.items():
            try:
                instance.connect()
            except arrapi.exceptions.ArrException as exc:
                logger.error(
                    "Failed to connect to %s: %s",
                    name,
                    exc,
                    extra={"runner": self},
                )
                continue
            connected.append(instance)
        return connected

    # Sub-commands

    def queue_clean(self):
        """
        Remove stalled, slow, skipped, or failed arr queue items and search again.
        """
        if not self.config.queue_cleaner.enabled:
            logger.info("Queue cleaner is disabled", extra={"runner": self})
            return None
        results = queuecleaner.QueueCleaner(
            self.config,
            self.connected_instances(),
            self.connected_services(),
            self.sink,
        ).run()
        if self.rule_evaluator is not None:
            self.rule_evaluator.prune_progress()
        if results:
            return results
        return None

    def download_clean(self):
        """
        Delete seeding downloads past their limits and move unlinked downloads.
        """
        if not self.config.download_cleaner.enabled:
            logger.info("Download cleaner is disabled", extra={"runner": self})
            return None
        results = downloadcleaner.DownloadCleaner(
            self.config,
            self.connected_services(),
            self.hardlinks,
        ).run()
        if results:
            return results
        return None

    def exec_(self):
        """
        Run the queue cleaner and then the download cleaner once.
        """
        # Results relies on preserving key order
        results = {}

        queue_results = self.queue_clean()
        if queue_results:
            results["queue-clean"] = queue_results

        download_results = self.download_clean()
        if download_results:
            results["download-clean"] = download_results

        if self.events.events:
            results["events"] = self.events.summary()

        if results:
            return results
        return None

    def daemon(self):
        """
        Run the enabled jobs continuously, every `daemon.poll` seconds.
        """
        # Log only once at the start messages that would be noisy if repeated for every
        # daemon poll loop.
        self.quiet = False
        while True:
            # Start the clock for the poll loop as early as possible to keep the inner
            # loop duration as accurate as possible.
            start = time.time()

            try:
                # Refresh the configuration and the clients
                self.update()
                # Run the `exec` sub-command as the inner loop
                self.exec_()
            except utils.RETRY_EXC_TYPES + (
                arrapi.exceptions.ConnectionFailure,
            ) as exc:
                logger.error(
                    "Connection error while updating from server: %s",
                    exc,
                )
                # Re-connect to external services and retry
            else:
                # Don't repeat noisy messages from now on.
                self.quiet = True
            logger.debug("Sub-command `exec` completed in %ss", time.time() - start)

            # Determine the poll interval before clearing the config
            poll = self.DEFAULT_POLL
            if self.config is not None:
                poll = self.config.daemon.poll

            # Free any memory possible between daemon loops
            self.clear()

            # Wait for the next interval
            time_left = poll - (time.time() - start)
            if time_left > 0:
                time.sleep(time_left)
            logger.debug("Sub-command `daemon` looping after %ss", time.time() - start)

    # Other methods

    def clear(self):
        """
        Free any memory possible between daemon loops.
        """
        self.config = None
        for service in self.download_services.values():
            service.disconnect()
        self.download_services.clear()
        self.instances.clear()
        self.hardlinks.clear()
        self.events.clear()
        # Tell Python it's a good time to free memory
        gc.collect()
