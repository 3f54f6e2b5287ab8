# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

"""
Count strikes against downloads until they reach the configured limit.
"""

import logging
import collections

logger = logging.getLogger(__name__)

# Removed keys remembered to detect recurring downloads, oldest forgotten first
MAX_REMOVED_ITEMS = 10000


class Striker:
    """
    Strike counters keyed by download hash and strike type.

    Counters live as long as the runner, across daemon loops.  When a counter
    reaches its limit it is removed and the key is remembered as removed, a later
    strike against a removed key means the download came back and is flagged
    recurring.
    """

    def __init__(self, events):
        self.events = events
        self.strikes = {}
        self.removed = collections.OrderedDict()
        self.recurring = set()

    def __repr__(self):
        return f"<{type(self).__name__} {len(self.strikes)!r} counters>"

    @staticmethod
    def key(item_hash, strike_type):
        """
        Return the counter key, hashes are case-insensitive.
        """
        return (item_hash.lower(), strike_type)

    def strike_and_check_limit(self, item_hash, name, max_strikes, strike_type):
        """
        Add a strike and return True if the download should now be removed.
        """
        if max_strikes == 0:
            return False

        key = self.key(item_hash, strike_type)
        if key in self.removed:
            logger.warning(
                "Item keeps coming back | %s | %s",
                strike_type.value,
                name,
            )
            self.recurring.add(key[0])
            self.events.publish_recurring_item(item_hash, name, max_strikes + 1)
            return True

        strike_count = self.strikes.get(key, 0) + 1
        self.strikes[key] = strike_count
        logger.info(
            "Item on strike number %s | reason %s | %s",
            strike_count,
            strike_type.value,
            name,
        )
        self.events.publish_strike(item_hash, name, strike_type, strike_count)

        if strike_count < max_strikes:
            return False
        logger.info("Removing item with max strikes | %s | %s", strike_type.value, name)
        del self.strikes[key]
        self.removed[key] = True
        self.removed.move_to_end(key)
        while len(self.removed) > MAX_REMOVED_ITEMS:
            self.removed.popitem(last=False)
        return True

    def reset(self, item_hash, strike_type):
        """
        Forget the strikes of a download for one strike type.
        """
        if self.strikes.pop(self.key(item_hash, strike_type), None) is not None:
            logger.debug("Strikes reset | %s | %s", strike_type.value, item_hash)

    def get(self, item_hash, strike_type):
        """
        Return the current number of strikes.
        """
        return self.strikes.get(self.key(item_hash, strike_type), 0)

    def is_recurring(self, item_hash):
        """
        Return True if the download was removed before and came back.
        """
        return item_hash.lower() in self.recurring

    def forget(self, item_hash):
        """
        Drop every strike counter of a download that was deleted.
        """
        item_hash = item_hash.lower()
        for key in [key for key in self.strikes if key[0] == item_hash]:
            del self.strikes[key]

    def forget_recurring(self, item_hash):
        """
        Stop treating the download as recurring once it has been handled.
        """
        self.recurring.discard(item_hash.lower())
