# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

"""
Evaluate the configured stall and slow rules against downloading items.
"""

import logging

from . import models

logger = logging.getLogger(__name__)


def get_matching_rule(item, rules, rule_kind):
    """
    Return the only enabled rule that applies to the item, `None` otherwise.

    Overlapping rules are a configuration problem, skip rather than guess.
    """
    matching = [rule for rule in rules if rule.matches(item)]
    if not matching:
        logger.debug("skip | no %s rule matched | %s", rule_kind, item.name)
        return None
    if len(matching) > 1:
        logger.warning(
            "skip | multiple %s rules matched | %s: %s",
            rule_kind,
            item.name,
            ", ".join(rule.name for rule in matching),
        )
        return None
    return matching[0]


class RuleEvaluator:
    """
    Turn rule violations into strikes and strikes into removal decisions.
    """

    def __init__(self, striker, queue_config):
        self.striker = striker
        self.queue_config = queue_config
        # Downloaded bytes at the previous observation, by hash
        self.progress = {}
        # Hashes observed since the last prune
        self.seen = set()

    def evaluate_stall_rules(self, item):
        """
        Strike a stalled item against its stall rule.
        """
        rule = get_matching_rule(item, self.queue_config.stall_rules, "stall")
        if rule is None or rule.max_strikes == 0:
            return models.RuleResult()

        if rule.reset_strikes_on_progress:
            self.reset_on_progress(item, rule.minimum_progress)
        self.progress[item.hash.lower()] = item.downloaded_bytes
        self.seen.add(item.hash.lower())

        if not self.striker.strike_and_check_limit(
            item.hash,
            item.name,
            rule.max_strikes,
            models.StrikeType.STALLED,
        ):
            return models.RuleResult()
        return models.RuleResult(
            should_remove=True,
            delete_reason=models.DeleteReason.STALLED,
            delete_from_client=rule.deletes_from_client(item),
        )

    def evaluate_slow_rules(self, item):
        """
        Strike a downloading item that is slower than its slow rule allows.
        """
        rule = get_matching_rule(item, self.queue_config.slow_rules, "slow")
        if rule is None or rule.max_strikes == 0:
            return models.RuleResult()

        checks = []
        if rule.min_speed:
            checks.append(
                (models.StrikeType.SLOW_SPEED, item.download_speed < rule.min_speed),
            )
        if rule.max_time_hours:
            checks.append(
                (
                    models.StrikeType.SLOW_TIME,
                    item.eta > rule.max_time_hours * 3600,
                ),
            )

        should_remove = False
        for strike_type, is_slow in checks:
            if not is_slow:
                if rule.reset_strikes_on_progress:
                    self.striker.reset(item.hash, strike_type)
                continue
            if self.striker.strike_and_check_limit(
                item.hash,
                item.name,
                rule.max_strikes,
                strike_type,
            ):
                should_remove = True
                break

        if not should_remove:
            return models.RuleResult()
        return models.RuleResult(
            should_remove=True,
            delete_reason=models.DeleteReason.SLOW_SPEED,
            delete_from_client=rule.deletes_from_client(item),
        )

    def reset_on_progress(self, item, minimum_progress):
        """
        Reset the stall strikes if the item downloaded enough since last time.
        """
        previous = self.progress.get(item.hash.lower())
        if previous is None:
            return
        progress = item.downloaded_bytes - previous
        if progress <= 0 or progress < minimum_progress:
            return
        logger.info(
            "Resetting stall strikes | downloaded %s bytes | %s",
            progress,
            item.name,
        )
        self.striker.reset(item.hash, models.StrikeType.STALLED)

    def prune_progress(self):
        """
        Forget the progress of downloads not evaluated since the last prune.
        """
        for item_hash in set(self.progress) - self.seen:
            logger.debug("Forgetting progress | %s", item_hash)
            del self.progress[item_hash]
        self.seen = set()
