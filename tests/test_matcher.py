import numpy as np
import pytest

from cadmatch.config.config import MatchConfig
from cadmatch.core.data_structures import BankEntry, Features, RenderedView
from cadmatch.core.errors import VisionError, VisionErrorKind
from cadmatch.features import matcher as matcher_module
from cadmatch.features.bank import FeatureBank
from cadmatch.features.matcher import Matcher, compute_match_percentage
from cadmatch.features.matching import filter_matches_ratio_test, match_keypoints
from cadmatch.geometry.homography import homography_ransac

from conftest import make_features


def entry(index, features):
    view = RenderedView(view_index=index, image=np.zeros((4, 4, 3), dtype=np.uint8))
    return BankEntry(view_index=index, view=view, features=features)


def grid_points(n, seed=1):
    rng = np.random.default_rng(seed)
    return rng.uniform(20, 500, size=(n, 2)).astype(np.float32)


@pytest.fixture
def translated_pair(random_descriptors):
    descriptors = random_descriptors(60)
    points = grid_points(60)
    reference = make_features(points, descriptors)
    live = make_features(points + np.float32([12.0, -7.0]), descriptors)
    return reference, live


def test_identical_descriptors_match_fully(translated_pair):
    reference, live = translated_pair
    bank = FeatureBank([entry(0, reference)])

    report = Matcher().match(live, bank)

    assert report.total_candidate_matches == 60
    assert report.inlier_matches == 60
    assert report.match_percentage == pytest.approx(100.0)


def test_counts_are_consistent(translated_pair, random_descriptors):
    reference, live = translated_pair
    unrelated = make_features(grid_points(40, seed=5), random_descriptors(40, seed=9))
    bank = FeatureBank([entry(0, reference), entry(1, unrelated)])

    report = Matcher().match(live, bank)

    assert len(report.per_entry) == 2
    assert report.total_candidate_matches == sum(e.candidate_matches for e in report.per_entry)
    assert report.inlier_matches == sum(e.inlier_matches for e in report.per_entry)
    for result in report.per_entry:
        assert 0 <= result.inlier_matches <= result.candidate_matches
    assert 0.0 <= report.match_percentage <= 100.0
    assert report.best_entry().view_index == 0


def test_too_few_candidates_skip_homography(random_descriptors):
    descriptors = random_descriptors(3)
    points = grid_points(3)
    bank = FeatureBank([entry(0, make_features(points, descriptors))])
    live = make_features(
        np.vstack([points, grid_points(5, seed=4)]),
        np.vstack([descriptors, random_descriptors(5, seed=3)]),
    )

    report = Matcher().match(live, bank)

    assert report.total_candidate_matches == 3
    assert report.inlier_matches == 0
    assert report.match_percentage == 0.0


def test_single_live_descriptor_gives_no_candidates(random_descriptors):
    descriptors = random_descriptors(10)
    bank = FeatureBank([entry(0, make_features(grid_points(10), descriptors))])
    live = make_features(grid_points(1), descriptors[:1])

    report = Matcher().match(live, bank)

    assert report.total_candidate_matches == 0
    assert report.match_percentage == 0.0


def test_empty_live_features(translated_pair):
    reference, _ = translated_pair
    bank = FeatureBank([entry(0, reference)])

    report = Matcher().match(Features.empty(61), bank)

    assert report.total_candidate_matches == 0
    assert report.match_percentage == 0.0


def test_empty_entries_are_skipped(translated_pair):
    reference, live = translated_pair
    bank = FeatureBank([entry(0, Features.empty(61)), entry(1, reference)])

    report = Matcher().match(live, bank)

    assert report.per_entry[0].skipped
    assert report.per_entry[0].candidate_matches == 0
    assert report.match_percentage == pytest.approx(100.0)


def test_score_is_independent_of_live_order(translated_pair, random_descriptors):
    reference, live = translated_pair
    noise = make_features(grid_points(30, seed=8), random_descriptors(30, seed=11))
    bank = FeatureBank([entry(0, reference), entry(1, noise)])
    order = np.random.default_rng(2).permutation(len(live))
    shuffled = make_features(live.keypoints.points[order], live.descriptors[order])

    a = Matcher().match(live, bank)
    b = Matcher().match(shuffled, bank)

    assert a.total_candidate_matches == b.total_candidate_matches
    assert a.inlier_matches == b.inlier_matches


def test_score_is_independent_of_bank_order(translated_pair, random_descriptors):
    reference, live = translated_pair
    partial = make_features(
        reference.keypoints.points[:25], reference.descriptors[:25]
    )
    noise = make_features(grid_points(30, seed=8), random_descriptors(30, seed=11))
    entries = [entry(0, reference), entry(1, noise), entry(2, Features.empty(61)), entry(3, partial)]

    forward = Matcher().match(live, FeatureBank(entries))
    reverse = Matcher().match(live, FeatureBank(entries[::-1]))

    assert forward.total_candidate_matches == reverse.total_candidate_matches
    assert forward.inlier_matches == reverse.inlier_matches
    assert forward.match_percentage == reverse.match_percentage
    assert [e.view_index for e in reverse.per_entry] == [3, 2, 1, 0]


def test_parallel_workers_preserve_order(translated_pair, random_descriptors):
    reference, live = translated_pair
    entries = [entry(i, reference if i % 2 else Features.empty(61)) for i in range(6)]
    config = MatchConfig()
    config.match_workers = 4

    serial = Matcher().match(live, FeatureBank(entries))
    parallel = Matcher(config).match(live, FeatureBank(entries))

    assert [e.view_index for e in parallel.per_entry] == list(range(6))
    assert parallel.inlier_matches == serial.inlier_matches
    assert parallel.total_candidate_matches == serial.total_candidate_matches


def test_homography_failure_is_recovered(translated_pair, monkeypatch):
    reference, live = translated_pair

    def broken(*args, **kwargs):
        raise VisionError(VisionErrorKind.HOMOGRAPHY_FAILURE, "degenerate")

    monkeypatch.setattr(matcher_module, "homography_ransac", broken)
    report = Matcher().match(live, FeatureBank([entry(0, reference)]))

    assert report.per_entry[0].error is not None
    assert report.per_entry[0].candidate_matches == 60
    assert report.inlier_matches == 0


def test_compute_match_percentage(translated_pair):
    reference, live = translated_pair

    assert compute_match_percentage(live, FeatureBank([entry(0, reference)])) == pytest.approx(100.0)


def test_ratio_test_is_strict(random_descriptors):
    descriptors = random_descriptors(2)
    # Two identical train rows give equal first and second distances.
    train = np.vstack([descriptors[:1], descriptors[:1]])

    knn = match_keypoints(descriptors[:1], train, k=2)
    _, _, good = filter_matches_ratio_test(np.zeros((1, 2)), np.zeros((2, 2)), knn, ratio=1.0)

    assert good == []


def test_match_keypoints_empty_inputs(random_descriptors):
    assert match_keypoints(np.zeros((0, 61), dtype=np.uint8), random_descriptors(3)) == []


def test_homography_needs_four_points():
    H, mask = homography_ransac(np.zeros((3, 2)), np.zeros((3, 2)))

    assert H is None
    assert mask.tolist() == [False, False, False]


def test_homography_recovers_translation():
    pts1 = grid_points(20)
    pts2 = pts1 + np.float32([5.0, 3.0])

    H, mask = homography_ransac(pts1, pts2)

    assert mask.all()
    np.testing.assert_allclose(H / H[2, 2], [[1, 0, 5], [0, 1, 3], [0, 0, 1]], atol=1e-4)
