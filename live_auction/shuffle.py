"""
Generate the auction order from the item pool.

Three strategies are supported, selected once when the auction starts:
- random: uniform Fisher-Yates shuffle of the whole pool
- tier-ordered: one shuffled block per tier, blocks in organizer order
- custom-mix: tiers grouped by the organizer, each group shuffled as one block

Items are any objects with `item_id` and `tier_id` attributes. Items
without a tier (or in a tier the ordering does not mention) are
shuffled and appended after the ordered blocks.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np


logger = logging.getLogger(__name__)

RANDOM = 'random'
TIER_ORDERED = 'tier-ordered'
CUSTOM_MIX = 'custom-mix'

STRATEGY_MODES = (RANDOM, TIER_ORDERED, CUSTOM_MIX)


def make_rng(seed: Optional[int] = None) -> np.random.Generator:
    """Create the random generator used for shuffling (seeded for dry runs and tests)."""
    return np.random.default_rng(seed)


def fisher_yates(values: Sequence, rng: Optional[np.random.Generator] = None) -> list:
    """
    Return a uniformly shuffled copy of values.

    For i from len-1 down to 1, swap element i with a uniformly chosen
    element in [0, i]. Every permutation is equally likely.
    """
    rng = rng if rng is not None else make_rng()
    shuffled = list(values)
    for i in range(len(shuffled) - 1, 0, -1):
        j = int(rng.integers(0, i + 1))
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def group_by_tier(items: Iterable) -> Dict[Optional[str], List[str]]:
    """Map tier id (None for untiered) to item ids, preserving pool order."""
    grouped: Dict[Optional[str], List[str]] = {}
    for item in items:
        grouped.setdefault(item.tier_id, []).append(item.item_id)
    return grouped


class ShuffleStrategy(ABC):
    """Builds the auction queue from a pool of items."""

    mode: str = ''

    @abstractmethod
    def build_queue(self, items: Sequence, rng: Optional[np.random.Generator] = None) -> List[str]:
        """Return the ordered item ids for the auction."""

    def describe(self) -> dict:
        return {'mode': self.mode}


class RandomStrategy(ShuffleStrategy):
    """Fully random order over the whole pool."""

    mode = RANDOM

    def build_queue(self, items, rng=None):
        return fisher_yates([item.item_id for item in items], rng)


class _BlockStrategy(ShuffleStrategy):
    """Concatenates shuffled blocks, each block made of one or more tiers."""

    def _blocks(self) -> List[List[str]]:
        raise NotImplementedError

    def build_queue(self, items, rng=None):
        rng = rng if rng is not None else make_rng()
        by_tier = group_by_tier(items)

        queue: List[str] = []
        placed = set()
        for block in self._blocks():
            pooled = []
            for tier_id in block:
                # Tiers may have zero items at auction time
                pooled.extend(by_tier.get(tier_id, []))
                placed.add(tier_id)
            queue.extend(fisher_yates(pooled, rng))

        leftovers = [
            item_id
            for tier_id, item_ids in by_tier.items()
            if tier_id not in placed
            for item_id in item_ids
        ]
        if leftovers:
            logger.debug(f"Appending {len(leftovers)} untiered/unordered items at the end")
            queue.extend(fisher_yates(leftovers, rng))

        return queue


class TierOrderedStrategy(_BlockStrategy):
    """Tiers in organizer order, shuffled within each tier."""

    mode = TIER_ORDERED

    def __init__(self, tier_order: Sequence[str]):
        self.tier_order = [str(t) for t in tier_order]

    def _blocks(self):
        return [[tier_id] for tier_id in self.tier_order]

    def describe(self):
        return {'mode': self.mode, 'tierOrder': list(self.tier_order)}


class CustomMixStrategy(_BlockStrategy):
    """
    Tier groups in organizer order; tiers in one group are pooled and
    shuffled together. Groups are assumed to partition the tier set
    (maintained by TierMix).
    """

    mode = CUSTOM_MIX

    def __init__(self, groups: Sequence[Sequence[str]]):
        self.groups = [[str(t) for t in group] for group in groups]

    def _blocks(self):
        return self.groups

    def describe(self):
        return {'mode': self.mode, 'groups': [list(g) for g in self.groups]}


def strategy_from_options(
    mode: str,
    tier_order: Optional[Sequence[str]] = None,
    groups: Optional[Sequence[Sequence[str]]] = None
) -> ShuffleStrategy:
    """
    Select the shuffle strategy for an auction start.

    Args:
        mode: One of 'random', 'tier-ordered', 'custom-mix'
        tier_order: Tier ids in auction order (tier-ordered)
        groups: Tier id groups in auction order (custom-mix)

    Raises:
        ValueError: If mode is unknown
    """
    if mode == RANDOM:
        return RandomStrategy()
    if mode == TIER_ORDERED:
        if not tier_order:
            logger.warning("Tier-ordered shuffle requested without a tier order, using random")
            return RandomStrategy()
        return TierOrderedStrategy(tier_order)
    if mode == CUSTOM_MIX:
        if not groups:
            logger.warning("Custom-mix shuffle requested without groups, using random")
            return RandomStrategy()
        return CustomMixStrategy(groups)
    raise ValueError(f"Unknown shuffle strategy: {mode!r} (expected one of {STRATEGY_MODES})")


class TierMix:
    """
    Ordered grouping of tiers for the custom-mix strategy.

    Every operation keeps the groups a partition of the tier set: no tier
    is lost, none appears twice, no group is empty.
    """

    def __init__(self, groups: Sequence[Sequence[str]]):
        self._groups = [list(group) for group in groups if group]
        self.validate_partition(self.tier_ids())

    @classmethod
    def from_tiers(cls, tier_ids: Sequence[str]) -> 'TierMix':
        """One group per tier, in the given order."""
        return cls([[tier_id] for tier_id in tier_ids])

    @property
    def groups(self) -> List[List[str]]:
        return [list(group) for group in self._groups]

    def tier_ids(self) -> List[str]:
        return [tier_id for group in self._groups for tier_id in group]

    def merge(self, target: int, source: int) -> None:
        """Append group `source` to group `target` and drop `source`."""
        self._check_index(target)
        self._check_index(source)
        if target == source:
            raise ValueError("Cannot merge a group with itself")
        self._groups[target].extend(self._groups[source])
        del self._groups[source]

    def split(self, index: int) -> None:
        """Replace a multi-tier group with one group per tier, in place."""
        self._check_index(index)
        group = self._groups[index]
        self._groups[index:index + 1] = [[tier_id] for tier_id in group]

    def detach(self, tier_id: str) -> None:
        """Move one tier out of its group into a new group right after it."""
        for index, group in enumerate(self._groups):
            if tier_id in group:
                if len(group) == 1:
                    return
                group.remove(tier_id)
                self._groups.insert(index + 1, [tier_id])
                return
        raise ValueError(f"Unknown tier: {tier_id}")

    def move(self, index: int, direction: str) -> None:
        """Swap a group with its neighbour ('up' or 'down'); no-op at the edges."""
        self._check_index(index)
        swap = index - 1 if direction == 'up' else index + 1
        if swap < 0 or swap >= len(self._groups):
            return
        self._groups[index], self._groups[swap] = self._groups[swap], self._groups[index]

    def to_strategy(self) -> CustomMixStrategy:
        return CustomMixStrategy(self.groups)

    def validate_partition(self, tier_ids: Iterable[str]) -> None:
        """
        Check that the groups partition exactly the given tier set.

        Raises:
            ValueError: On a duplicated, missing or unknown tier
        """
        expected = list(tier_ids)
        seen = self.tier_ids()
        if len(seen) != len(set(seen)):
            raise ValueError("A tier appears in more than one group")
        if set(seen) != set(expected):
            missing = set(expected) - set(seen)
            extra = set(seen) - set(expected)
            raise ValueError(f"Groups do not partition tiers (missing={sorted(missing)}, extra={sorted(extra)})")

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self._groups):
            raise IndexError(f"No tier group at position {index}")
