"""
Many-to-one matching of live features against every bank entry.

For each entry: k-NN Hamming matching (reference -> live), Lowe ratio test,
then homography RANSAC to count geometrically consistent inliers. The
per-entry counts are summed into a MatchReport.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

import cv2

from cadmatch.config.config import MatchConfig
from cadmatch.core.data_structures import BankEntry, EntryMatch, Features, MatchReport
from cadmatch.core.errors import VisionError, VisionErrorKind
from cadmatch.features.bank import FeatureBank
from cadmatch.features.matching import filter_matches_ratio_test, match_keypoints
from cadmatch.geometry.homography import homography_ransac

logger = logging.getLogger(__name__)


class Matcher:
    """Scores live features against a FeatureBank."""

    def __init__(self, config: Optional[MatchConfig] = None) -> None:
        self.config = config or MatchConfig()

    @staticmethod
    def _recover(result: EntryMatch, error: VisionError) -> EntryMatch:
        logger.warning("[match] view %d failed: %s", result.view_index, error)
        result.error = str(error)
        result.inlier_matches = 0
        return result

    def match_entry(self, live: Features, entry: BankEntry) -> EntryMatch:
        """
        Match live features against a single bank entry.

        Vision failures are logged and recorded on the result; they never
        propagate.
        """
        result = EntryMatch(view_index=entry.view_index)
        if entry.features.is_empty:
            result.skipped = True
            return result
        if live.is_empty:
            return result

        try:
            knn_matches = match_keypoints(entry.descriptors, live.descriptors, k=2)
        except cv2.error as e:
            return self._recover(result, VisionError(VisionErrorKind.MATCH_FAILURE, str(e)))

        pts_ref, pts_live, good_matches = filter_matches_ratio_test(
            entry.keypoints.points,
            live.keypoints.points,
            knn_matches,
            ratio=self.config.ratio,
        )
        result.candidate_matches = len(good_matches)

        if len(good_matches) < self.config.min_homography_matches:
            logger.debug(
                "[match] view %d: %d candidates, too few for homography",
                entry.view_index,
                len(good_matches),
            )
            return result

        try:
            _, inlier_mask = homography_ransac(
                pts_ref, pts_live, reproj_threshold=self.config.ransac_reproj_threshold
            )
        except VisionError as e:
            return self._recover(result, e)
        result.inlier_matches = int(inlier_mask.sum())

        logger.debug(
            "[match] view %d: %d candidates, %d inliers",
            entry.view_index,
            result.candidate_matches,
            result.inlier_matches,
        )
        return result

    def match(self, live: Features, bank: FeatureBank) -> MatchReport:
        """
        Match live features against every entry of the bank.

        Args:
            live: Features extracted from the camera frame.
            bank: Reference feature bank.

        Returns:
            MatchReport with totals and a per-entry breakdown in bank order.
        """
        entries = list(bank)
        workers = max(1, int(self.config.match_workers))

        if workers > 1 and len(entries) > 1:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                per_entry: List[EntryMatch] = list(
                    pool.map(lambda e: self.match_entry(live, e), entries)
                )
        else:
            per_entry = [self.match_entry(live, e) for e in entries]

        report = MatchReport(per_entry=per_entry)
        for result in per_entry:
            report.total_candidate_matches += result.candidate_matches
            report.inlier_matches += result.inlier_matches

        logger.info(
            "[match] total candidates %d, inliers %d, match %.2f%%",
            report.total_candidate_matches,
            report.inlier_matches,
            report.match_percentage,
        )
        return report


def compute_match_percentage(
    live: Features, bank: FeatureBank, config: Optional[MatchConfig] = None
) -> float:
    """Convenience wrapper returning only the match percentage."""
    return Matcher(config).match(live, bank).match_percentage


__all__ = ["Matcher", "compute_match_percentage"]
