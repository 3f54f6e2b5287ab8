# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

"""
Tests for Cleanuparr.
"""

import pathlib
import tempfile
import unittest

from unittest import mock

import requests_mock
import yaml

import cleanuparr.runner
from .. import config
from .. import events
from .. import striker
from .. import rules
from .. import hardlinks

# Minimal queue cleaner configuration with one stall and one slow rule
QUEUE_CLEANER = {
    "downloading-metadata-max-strikes": 3,
    "failed-import": {"max-strikes": 3},
    "stall-rules": [
        {
            "name": "Stalled",
            "max-strikes": 3,
            "privacy-type": "both",
        },
    ],
    "slow-rules": [
        {
            "name": "Slow",
            "max-strikes": 3,
            "privacy-type": "both",
            "min-speed": "1KB",
        },
    ],
}


class CleanuparrTestCase(unittest.TestCase):
    """
    Constants and set-up used in all Cleanuparr tests.
    """

    maxDiff = None  # noqa: F841

    CONFIG = cleanuparr.runner.CleanuparrRunner.EXAMPLE_CONFIG
    HOME = CONFIG.parents[1]
    ENV = {
        "HOME": str(HOME),
        "DEBUG": "true",
    }

    SONARR_URL = "http://localhost:8989"
    RADARR_URL = "http://localhost:7878"

    def setUp(self):
        """
        Set up used in all Cleanuparr tests.
        """
        super().setUp()

        # Create a temporary directory for mutable test data
        self.tmp_dir = (
            tempfile.TemporaryDirectory(  # pylint: disable=consider-using-with
                prefix=f"{self.__class__.__module__}-",
                suffix=".d",
            )
        )
        self.addCleanup(self.tmp_dir.cleanup)
        self.tmp_path = pathlib.Path(self.tmp_dir.name)

        # No test may talk to the network
        self.requests_mock = requests_mock.Mocker()
        self.addCleanup(self.requests_mock.stop)
        self.requests_mock.start()

    def make_config(self, **sections):
        """
        Return a validated configuration from `kebab-case` section mappings.
        """
        data = {
            key.replace("_", "-"): value for key, value in sections.items()
        }
        data.setdefault("queue-cleaner", QUEUE_CLEANER)
        return config.Config.from_dict(data)

    def write_config(self, **sections):
        """
        Write a configuration file under a temporary home and return its path.
        """
        config_file = self.tmp_path / ".config" / "cleanuparr.yml"
        config_file.parent.mkdir(parents=True, exist_ok=True)
        with config_file.open("w", encoding="utf-8") as config_opened:
            yaml.safe_dump(
                {key.replace("_", "-"): value for key, value in sections.items()},
                config_opened,
            )
        return config_file

    def make_service(  # pylint: disable=too-many-arguments
        self,
        service_type,
        app_config=None,
        client=None,
        name="Client",
        url="http://localhost:8080",
    ):
        """
        Return a download service of the given type wired to a mocked library client.
        """
        if app_config is None:
            app_config = self.make_config()
        self.events = events.EventPublisher()
        self.striker = striker.Striker(self.events)
        self.hardlinks = hardlinks.HardLinkFileService()
        self.rule_evaluator = rules.RuleEvaluator(
            self.striker,
            app_config.queue_cleaner,
        )
        service = service_type(
            config.DownloadClientConfig(
                name=name,
                type=service_type.TYPE,
                url=url,
            ),
            app_config,
            events=self.events,
            striker=self.striker,
            rule_evaluator=self.rule_evaluator,
            hardlinks=self.hardlinks,
        )
        # pylint: disable-next=protected-access
        service._client = mock.MagicMock() if client is None else client
        return service

    def mock_arr_status(self, url, version="3.0.10.1567", api_version="v3"):
        """
        Mock the system status request every `arrapi` client sends when created.
        """
        return self.requests_mock.get(
            f"{url}/api/{api_version}/system/status",
            json={"version": version},
        )

    def write_file(self, *parts, content="Test download content\n"):
        """
        Write a file under the temporary directory, creating parents.
        """
        path = self.tmp_path.joinpath(*parts)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path
