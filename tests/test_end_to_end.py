"""Full-resolution runs of the reference and live paths together."""

import numpy as np
import pytest

from cadmatch.config.config import MatchConfig
from cadmatch.core.data_structures import Frame
from cadmatch.features.bank import FeatureBank
from cadmatch.features.keypoints import FeatureExtractor
from cadmatch.features.matcher import Matcher
from cadmatch.io.frame_source import LatestFrameSlot, NullDisplaySurface, default_intrinsics
from cadmatch.io.yuv import YuvImage
from cadmatch.mesh.obj_loader import load_obj_bytes
from cadmatch.pipeline.coordinator import PipelineCoordinator
from cadmatch.pipeline.dispatch import QueueDispatcher
from cadmatch.render.viewpoints import bake

from conftest import STEPPED_BOXES, boxes_obj


@pytest.fixture(scope="module")
def stepped_bank():
    text = boxes_obj(STEPPED_BOXES)
    config = MatchConfig()
    views = bake(load_obj_bytes(text.encode()), config=config)
    return FeatureBank.build(views, FeatureExtractor.for_reference(config)), config


def score(image, bank, config):
    live = FeatureExtractor.for_live(config).extract(image)
    return Matcher(config).match(live, bank)


def test_reference_views_have_features(stepped_bank):
    bank, _ = stepped_bank

    assert len(bank) == 8
    assert bank[0].view.image.shape == (1024, 1024, 3)
    assert not bank.empty_indices


def test_rendered_view_matches_itself(stepped_bank):
    bank, config = stepped_bank

    report = score(np.array(bank[3].view.image), bank, config)

    assert report.match_percentage > 50.0
    best = max(e.inlier_matches for e in report.per_entry)
    assert report.per_entry[3].inlier_matches == best


def test_noise_scores_below_a_true_view(stepped_bank):
    bank, config = stepped_bank
    noise = np.random.default_rng(0).integers(0, 256, size=(1024, 1024, 3), dtype=np.uint8)

    noise_report = score(noise, bank, config)
    view_report = score(np.array(bank[3].view.image), bank, config)

    assert noise_report.match_percentage == 0.0 or noise_report.match_percentage <= 5.0
    assert noise_report.match_percentage < view_report.match_percentage


def test_bank_order_does_not_change_the_score(stepped_bank):
    bank, config = stepped_bank
    image = np.array(bank[3].view.image)

    forward = score(image, bank, config)
    reverse = score(image, FeatureBank(list(bank)[::-1]), config)

    assert forward.total_candidate_matches == reverse.total_candidate_matches
    assert forward.inlier_matches == reverse.inlier_matches
    assert forward.match_percentage == pytest.approx(reverse.match_percentage)


def test_matching_is_repeatable(stepped_bank):
    bank, config = stepped_bank
    image = np.array(bank[5].view.image)

    first = score(image, bank, config)
    second = score(image, bank, config)

    assert first.inlier_matches == second.inlier_matches
    assert first.total_candidate_matches == second.total_candidate_matches


def test_yuv_camera_frame_through_pipeline(stepped_obj):
    config = MatchConfig()
    slot = LatestFrameSlot()
    dispatcher = QueueDispatcher().start()
    coordinator = PipelineCoordinator(slot, dispatcher, config)
    values = []
    coordinator.subscribe(values.append)

    coordinator.bootstrap(stepped_obj.encode())
    coordinator.on_surface_ready(NullDisplaySurface(1024, 1024))
    coordinator.request_compute()
    image = YuvImage.from_rgb(np.array(coordinator.bank[3].view.image))
    slot.publish(Frame(image=image, width=1024, height=1024, intrinsics=default_intrinsics(1024, 1024)))
    coordinator.on_frame()
    assert dispatcher.flush(timeout=30)

    coordinator.release()
    dispatcher.stop(timeout=5)

    assert len(values) == 1
    assert values[0] > 0.0
