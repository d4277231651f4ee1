"""
Immutable store of reference features, one entry per baked view.
"""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, List, Sequence, Tuple

import numpy as np

from cadmatch.core.data_structures import BankEntry, Features, KeypointSet, RenderedView
from cadmatch.features.keypoints import FeatureExtractor

logger = logging.getLogger(__name__)


def _freeze(array: np.ndarray) -> np.ndarray:
    frozen = np.array(array, copy=True)
    frozen.setflags(write=False)
    return frozen


def _freeze_entry(entry: BankEntry) -> BankEntry:
    kp = entry.features.keypoints
    keypoints = KeypointSet(
        points=_freeze(kp.points),
        sizes=_freeze(kp.sizes),
        angles=_freeze(kp.angles),
        responses=_freeze(kp.responses),
        octaves=_freeze(kp.octaves),
    )
    view = RenderedView(
        view_index=entry.view.view_index,
        image=_freeze(entry.view.image),
        viewpoint=entry.view.viewpoint,
    )
    return BankEntry(
        view_index=entry.view_index,
        view=view,
        features=Features(keypoints, _freeze(entry.features.descriptors)),
    )


class FeatureBank:
    """
    Ordered, read-only collection of BankEntries.

    Entries without descriptors are kept so view indices stay stable; the
    matcher skips them. Iteration follows insertion (azimuth) order.
    """

    def __init__(self, entries: Iterable[BankEntry]) -> None:
        self._entries: Tuple[BankEntry, ...] = tuple(_freeze_entry(e) for e in entries)

    @classmethod
    def build(cls, views: Sequence[RenderedView], extractor: FeatureExtractor) -> "FeatureBank":
        """
        Extract reference features from every baked view.

        Args:
            views: Rendered views in azimuth order.
            extractor: Reference feature extractor.

        Returns:
            The populated bank.
        """
        entries = []
        for view in views:
            features = extractor.extract(view.image)
            if features.is_empty:
                logger.warning("[features] no features in reference view %d", view.view_index)
            else:
                logger.debug(
                    "[features] %d keypoints in reference view %d", len(features), view.view_index
                )
            entries.append(BankEntry(view_index=view.view_index, view=view, features=features))

        bank = cls(entries)
        logger.info(
            "[features] bank built: %d entries, %d empty, %d keypoints total",
            len(bank),
            len(bank.empty_indices),
            sum(len(e.features) for e in bank),
        )
        return bank

    @classmethod
    def from_entries(cls, entries: Iterable[BankEntry]) -> "FeatureBank":
        return cls(entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index: int) -> BankEntry:
        return self._entries[index]

    def __iter__(self) -> Iterator[BankEntry]:
        return iter(self._entries)

    @property
    def entries(self) -> Tuple[BankEntry, ...]:
        return self._entries

    @property
    def empty_indices(self) -> List[int]:
        return [e.view_index for e in self._entries if e.features.is_empty]

    def non_empty(self) -> List[BankEntry]:
        return [e for e in self._entries if not e.features.is_empty]


__all__ = ["FeatureBank"]
