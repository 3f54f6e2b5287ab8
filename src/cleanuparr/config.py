# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

"""
Load and validate the Cleanuparr YAML configuration file.

Configuration keys are written in `kebab-case` in the file and deserialized into
the dataclasses below which are then passed explicitly to the components that use
them.
"""

import re
import dataclasses
import pathlib
import typing
import logging

import yaml

from . import models
from .utils import CleanuparrValidationError

logger = logging.getLogger(__name__)

DOWNLOAD_CLIENT_TYPES = (
    "qbittorrent",
    "deluge",
    "transmission",
    "utorrent",
    "rtorrent",
)
ARR_TYPES = ("sonarr", "radarr", "lidarr", "readarr", "whisparr")
DEFAULT_UNLINKED_TARGET_CATEGORY = "cleanuparr-unlinked"

BYTE_SIZE_RE = re.compile(
    r"^\s*(?P<number>[0-9]+(\.[0-9]+)?)\s*(?P<unit>[KMGTP]?)(i?B)?\s*$",
    re.IGNORECASE,
)
BYTE_SIZE_UNITS = {"": 0, "K": 1, "M": 2, "G": 3, "T": 4, "P": 5}


def parse_byte_size(value):
    """
    Return the number of bytes for an integer or a human size such as `10MB`.
    """
    if value is None or value == "":
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    match = BYTE_SIZE_RE.match(str(value))
    if match is None:
        raise CleanuparrValidationError(f"Invalid byte size: {value!r}")
    return int(
        float(match.group("number"))
        * 1024 ** BYTE_SIZE_UNITS[match.group("unit").upper()]
    )


def from_mapping(cls, data, context):
    """
    Instantiate a configuration dataclass from a mapping with `kebab-case` keys.
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise CleanuparrValidationError(
            f"The {context} configuration must be a mapping, got: {data!r}",
        )
    field_names = {field.name for field in dataclasses.fields(cls)}
    kwargs = {}
    for key, value in data.items():
        name = str(key).replace("-", "_")
        if name not in field_names:
            raise CleanuparrValidationError(
                f"Unknown {context} configuration option: {key!r}",
            )
        kwargs[name] = value
    try:
        return cls(**kwargs)
    except TypeError as exc:
        raise CleanuparrValidationError(
            f"Incomplete {context} configuration: {exc}",
        ) from exc


@dataclasses.dataclass
class GeneralConfig:
    """
    Settings shared by all jobs.
    """

    dry_run: bool = False
    ignored_downloads: typing.List[str] = dataclasses.field(default_factory=list)
    http_timeout: int = 100


@dataclasses.dataclass
class DaemonConfig:
    """
    Settings of the `daemon` sub-command.
    """

    poll: int = 300


@dataclasses.dataclass
class DownloadClientConfig:
    """
    One download client instance, credentials embedded in the URL.
    """

    name: str
    type: str
    url: str
    enabled: bool = True

    def validate(self):
        """
        Raise a validation error if the download client can't be used.
        """
        if not self.name:
            raise CleanuparrValidationError("Download client name cannot be empty")
        if self.type not in DOWNLOAD_CLIENT_TYPES:
            raise CleanuparrValidationError(
                f"Download client type {self.type!r} is not supported: {self.name}",
            )
        if not self.url:
            raise CleanuparrValidationError(
                f"Download client URL cannot be empty: {self.name}",
            )


@dataclasses.dataclass
class ArrInstanceConfig:
    """
    One arr instance.
    """

    name: str
    url: str
    api_key: str = ""
    type: str = ""
    version: int = 0
    enabled: bool = True
    failed_import_max_strikes: int = -1

    def validate(self):
        """
        Raise a validation error if the arr instance can't be used.
        """
        if self.type not in ARR_TYPES:
            raise CleanuparrValidationError(
                f"Instance type {self.type!r} is not yet supported: {self.name}",
            )
        if not self.url:
            raise CleanuparrValidationError(
                f"Arr instance URL cannot be empty: {self.name}",
            )


@dataclasses.dataclass
class QueueRule:  # pylint: disable=too-many-instance-attributes
    """
    Common settings of the stall and slow rules.
    """

    name: str
    enabled: bool = True
    max_strikes: int = 3
    privacy_type: models.PrivacyType = models.PrivacyType.PUBLIC
    min_completion_percentage: float = 0
    max_completion_percentage: float = 100
    delete_private_from_client: bool = False
    reset_strikes_on_progress: bool = True

    def __post_init__(self):
        self.privacy_type = parse_privacy_type(self.privacy_type, self.name)

    def validate(self):
        """
        Raise a validation error for impossible rules.
        """
        if not self.name or not self.name.strip():
            raise CleanuparrValidationError("Rule name cannot be empty")
        if self.max_strikes != 0 and self.max_strikes < 3:
            raise CleanuparrValidationError(
                f"Max strikes must be 0 or at least 3: {self.name}",
            )
        if not 0 < self.max_completion_percentage <= 100:
            raise CleanuparrValidationError(
                f"Completion percentage must be between 1 and 100: {self.name}",
            )
        if not 0 <= self.min_completion_percentage < self.max_completion_percentage:
            raise CleanuparrValidationError(
                "Minimum completion percentage must be lower than the maximum: "
                f"{self.name}",
            )

    def matches(self, item):
        """
        Return True if this rule applies to the given download item.
        """
        return (
            self.enabled
            and self.privacy_type.matches(item.is_private)
            and self.min_completion_percentage
            <= item.completion_percentage
            <= self.max_completion_percentage
        )

    def deletes_from_client(self, item):
        """
        Return True if removing the item should also delete it from its client.
        """
        return not item.is_private or self.delete_private_from_client


@dataclasses.dataclass
class StallRule(QueueRule):
    """
    Strike downloads that are downloading without any throughput.
    """

    minimum_progress: typing.Union[int, str] = 0

    def __post_init__(self):
        super().__post_init__()
        self.minimum_progress = parse_byte_size(self.minimum_progress)


@dataclasses.dataclass
class SlowRule(QueueRule):
    """
    Strike downloads that are too slow or would take too long.
    """

    min_speed: typing.Union[int, str] = 0
    max_time_hours: float = 0
    ignore_above_size: typing.Union[int, str] = 0

    def __post_init__(self):
        super().__post_init__()
        self.min_speed = parse_byte_size(self.min_speed)
        self.ignore_above_size = parse_byte_size(self.ignore_above_size)

    def validate(self):
        super().validate()
        if not self.min_speed and not self.max_time_hours:
            raise CleanuparrValidationError(
                f"Either min speed or max time must be set: {self.name}",
            )
        if self.max_time_hours < 0:
            raise CleanuparrValidationError(
                f"Max time cannot be negative: {self.name}",
            )

    def matches(self, item):
        if self.ignore_above_size and item.size > self.ignore_above_size:
            return False
        return super().matches(item)


@dataclasses.dataclass
class FailedImportConfig:
    """
    Settings of the arr failed import check.
    """

    max_strikes: int = 0
    ignore_private: bool = False
    delete_private: bool = False
    skip_if_not_found_in_client: bool = True
    ignored_patterns: typing.List[str] = dataclasses.field(default_factory=list)

    def validate(self):
        """
        Raise a validation error for an impossible failed import threshold.
        """
        if self.max_strikes != 0 and self.max_strikes < 3:
            raise CleanuparrValidationError(
                "Failed import max strikes must be 0 or at least 3",
            )


@dataclasses.dataclass
class QueueCleanerConfig:
    """
    Settings of the queue cleaner job.
    """

    enabled: bool = True
    ignored_downloads: typing.List[str] = dataclasses.field(default_factory=list)
    downloading_metadata_max_strikes: int = 0
    failed_import: FailedImportConfig = dataclasses.field(
        default_factory=FailedImportConfig,
    )
    stall_rules: typing.List[StallRule] = dataclasses.field(default_factory=list)
    slow_rules: typing.List[SlowRule] = dataclasses.field(default_factory=list)

    def __post_init__(self):
        if not isinstance(self.failed_import, FailedImportConfig):
            self.failed_import = from_mapping(
                FailedImportConfig,
                self.failed_import,
                "failed import",
            )
        self.stall_rules = [
            rule if isinstance(rule, StallRule) else from_mapping(
                StallRule, rule, "stall rule"
            )
            for rule in self.stall_rules or []
        ]
        self.slow_rules = [
            rule if isinstance(rule, SlowRule) else from_mapping(
                SlowRule, rule, "slow rule"
            )
            for rule in self.slow_rules or []
        ]

    def validate(self):
        """
        Validate all rules of the queue cleaner.
        """
        if self.downloading_metadata_max_strikes < 0:
            raise CleanuparrValidationError(
                "Downloading metadata max strikes cannot be negative",
            )
        self.failed_import.validate()
        for rule in self.stall_rules + self.slow_rules:
            rule.validate()


@dataclasses.dataclass
class SeedingRule:
    """
    When to delete seeding downloads of one category.

    Seed times are in minutes, `-1` means unbounded.
    """

    name: str
    privacy_type: models.PrivacyType = models.PrivacyType.PUBLIC
    max_ratio: float = -1
    min_seed_time: float = 0
    max_seed_time: float = -1
    delete_source_files: bool = True

    def __post_init__(self):
        self.privacy_type = parse_privacy_type(self.privacy_type, self.name)

    def validate(self):
        """
        Raise a validation error for rules that could never clean anything.
        """
        if not self.name or not self.name.strip():
            raise CleanuparrValidationError("Category name can not be empty")
        if self.max_ratio < 0 and self.max_seed_time < 0:
            raise CleanuparrValidationError(
                f"Either max ratio or max seed time must be enabled: {self.name}",
            )
        if self.min_seed_time < 0:
            raise CleanuparrValidationError(
                f"Min seed time can not be negative: {self.name}",
            )

    def matches(self, item):
        """
        Return True if this rule applies to the given seeding item.
        """
        return (
            item.category.lower() == self.name.lower()
            and self.privacy_type.matches(item.is_private)
        )


@dataclasses.dataclass
class DownloadCleanerConfig:  # pylint: disable=too-many-instance-attributes
    """
    Settings of the seeding and unlinked download cleaner job.
    """

    enabled: bool = False
    ignored_downloads: typing.List[str] = dataclasses.field(default_factory=list)
    seeding_rules: typing.List[SeedingRule] = dataclasses.field(default_factory=list)
    unlinked_enabled: bool = False
    unlinked_target_category: str = DEFAULT_UNLINKED_TARGET_CATEGORY
    unlinked_use_tag: bool = False
    unlinked_ignored_root_dirs: typing.List[str] = dataclasses.field(
        default_factory=list,
    )
    unlinked_categories: typing.List[str] = dataclasses.field(default_factory=list)

    def __post_init__(self):
        self.seeding_rules = [
            rule if isinstance(rule, SeedingRule) else from_mapping(
                SeedingRule, rule, "seeding rule"
            )
            for rule in self.seeding_rules or []
        ]

    def validate(self):  # noqa: V105
        """
        Validate the seeding rules and the unlinked settings.
        """
        if not self.enabled:
            return
        if not self.seeding_rules and not self.unlinked_enabled:
            raise CleanuparrValidationError(
                "No download cleaner features are enabled",
            )
        seen = set()
        for rule in self.seeding_rules:
            rule.validate()
            key = (rule.name.lower(), rule.privacy_type)
            if key in seen:
                raise CleanuparrValidationError(
                    f"Duplicate seeding rule: {rule.name} ({rule.privacy_type.value})",
                )
            seen.add(key)
        for rule in self.seeding_rules:
            if rule.privacy_type is models.PrivacyType.BOTH and [
                other
                for other in self.seeding_rules
                if other is not rule and other.name.lower() == rule.name.lower()
            ]:
                raise CleanuparrValidationError(
                    "A seeding rule for both privacy types excludes others: "
                    f"{rule.name}",
                )
        if not self.unlinked_enabled:
            return
        if not self.unlinked_target_category:
            raise CleanuparrValidationError("Unlinked target category is required")
        if not self.unlinked_categories:
            raise CleanuparrValidationError(
                "At least one unlinked category is required",
            )
        if [category for category in self.unlinked_categories if not category]:
            raise CleanuparrValidationError("Empty unlinked category filter found")
        if self.unlinked_target_category.lower() in {
            category.lower() for category in self.unlinked_categories
        }:
            raise CleanuparrValidationError(
                "The unlinked target category should not be present in the "
                "unlinked categories",
            )
        for root_dir in self.unlinked_ignored_root_dirs:
            if not pathlib.Path(root_dir).is_dir():
                raise CleanuparrValidationError(
                    f"Unlinked ignored root directory does not exist: {root_dir}",
                )


@dataclasses.dataclass
class Config:
    """
    The whole Cleanuparr configuration.
    """

    general: GeneralConfig = dataclasses.field(default_factory=GeneralConfig)
    daemon: DaemonConfig = dataclasses.field(default_factory=DaemonConfig)
    download_clients: typing.List[DownloadClientConfig] = dataclasses.field(
        default_factory=list,
    )
    arrs: typing.List[ArrInstanceConfig] = dataclasses.field(default_factory=list)
    queue_cleaner: QueueCleanerConfig = dataclasses.field(
        default_factory=QueueCleanerConfig,
    )
    download_cleaner: DownloadCleanerConfig = dataclasses.field(
        default_factory=DownloadCleanerConfig,
    )

    @classmethod
    def load(cls, config_file):
        """
        Read, parse, and validate the configuration file.
        """
        config_file = pathlib.Path(config_file)
        try:
            with config_file.open(encoding="utf-8") as config_opened:
                data = yaml.safe_load(config_opened)
        except FileNotFoundError as exc:
            raise CleanuparrValidationError(
                f"Configuration file not found: {config_file}",
            ) from exc
        except yaml.YAMLError as exc:
            raise CleanuparrValidationError(
                f"Could not parse configuration file {config_file}: {exc}",
            ) from exc
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data):
        """
        Deserialize and validate the configuration from parsed YAML.
        """
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise CleanuparrValidationError(
                "The configuration file must contain a mapping",
            )
        arr_configs = []
        for arr_type, instances in (data.get("arrs") or {}).items():
            for instance in instances or []:
                instance = dict(instance)
                instance.setdefault("type", arr_type)
                arr_configs.append(
                    from_mapping(ArrInstanceConfig, instance, f"{arr_type} instance"),
                )
        config = cls(
            general=from_mapping(GeneralConfig, data.get("general"), "general"),
            daemon=from_mapping(DaemonConfig, data.get("daemon"), "daemon"),
            download_clients=[
                from_mapping(DownloadClientConfig, client, "download client")
                for client in data.get("download-clients") or []
            ],
            arrs=arr_configs,
            queue_cleaner=from_mapping(
                QueueCleanerConfig,
                data.get("queue-cleaner"),
                "queue cleaner",
            ),
            download_cleaner=from_mapping(
                DownloadCleanerConfig,
                data.get("download-cleaner"),
                "download cleaner",
            ),
        )
        config.validate()
        return config

    def validate(self):
        """
        Validate every section of the configuration.
        """
        names = set()
        for client_config in self.download_clients:
            client_config.validate()
            if client_config.name.lower() in names:
                raise CleanuparrValidationError(
                    f"Duplicate download client name: {client_config.name}",
                )
            names.add(client_config.name.lower())
        for arr_config in self.arrs:
            arr_config.validate()
        self.queue_cleaner.validate()
        self.download_cleaner.validate()
        if not self.download_clients and not self.arrs:
            logger.warning("No download clients or arr instances are configured")
        return self

    @property
    def queue_ignored_downloads(self):
        """
        Return the ignore patterns applied by the queue cleaner.
        """
        return self.general.ignored_downloads + self.queue_cleaner.ignored_downloads

    @property
    def download_ignored_downloads(self):
        """
        Return the ignore patterns applied by the download cleaner.
        """
        return self.general.ignored_downloads + self.download_cleaner.ignored_downloads


def parse_privacy_type(value, name):
    """
    Return the privacy type enum member for a configured value.
    """
    try:
        return models.PrivacyType(str(getattr(value, "value", value)).lower())
    except ValueError as exc:
        raise CleanuparrValidationError(
            f"Invalid privacy type {value!r}: {name}",
        ) from exc
