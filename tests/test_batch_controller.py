import numpy as np
import pytest

import batch_controller
from batch_controller import (
    DEFAULT_ANALYSIS_EDGE_PX,
    BatchController,
    CacheMissError,
    ProcessingParameters,
)
from color_statistics import extract_statistics
from image_buffer import ImageBuffer


CONFIG = {'engine': {'analysis_edge_px': 32, 'export_edge_px': 40}}


@pytest.fixture
def controller():
    return BatchController(CONFIG)


@pytest.fixture
def reference(noise_image):
    return noise_image(90, 220, seed=100)


def run(controller, reference, targets, **kwargs):
    return list(controller.process_batch(reference, targets, **kwargs))


def test_results_follow_input_order(controller, reference, noise_image):
    targets = [(7, noise_image(30, 120, seed=1)), (3, noise_image(60, 160, seed=2)), (11, noise_image(0, 255, seed=3))]
    results = run(controller, reference, targets)

    assert [r.image_id for r in results] == [7, 3, 11]
    assert all(r.ok for r in results)
    # 64x48 sources at the 32px analysis tier
    assert all(r.buffer.size == (32, 24) for r in results)
    assert controller.image_ids() == [7, 3, 11]


def test_stopping_iteration_cancels_remaining_images(controller, reference, noise_image):
    targets = [(i, noise_image(30, 200, seed=i)) for i in range(3)]
    batch = controller.process_batch(reference, targets)
    first = next(batch)
    batch.close()

    assert first.image_id == 0 and first.ok
    assert controller.image_ids() == [0]
    assert controller.reprocess(0, 50, 50) == first.buffer
    with pytest.raises(CacheMissError):
        controller.reprocess(1, 50, 50)


def test_failed_image_does_not_abort_batch(controller, reference, noise_image):
    good = noise_image(30, 200, seed=4)
    targets = [
        (1, good),
        (2, (4, 4, b'\x00' * 10)),
        (3, np.zeros((0, 5, 3), dtype=np.uint8)),
        (4, good),
    ]
    results = run(controller, reference, targets)

    assert [r.ok for r in results] == [True, False, False, True]
    assert "Dimension mismatch" in results[1].error
    assert results[1].buffer is None
    assert "Empty" in results[2].error
    assert controller.image_ids() == [1, 4]


def test_duplicate_id_is_reported(controller, reference, noise_image):
    results = run(controller, reference, [(1, noise_image(30, 200)), (1, noise_image(30, 200, seed=9))])
    assert results[0].ok
    assert not results[1].ok
    assert "Duplicate" in results[1].error


def test_raw_rgba_bytes_are_accepted(controller, reference):
    data = bytes([120, 80, 60, 255] * 20 * 10)
    results = run(controller, reference, [(5, (20, 10, data))])
    assert results[0].ok
    assert results[0].buffer.size == (20, 10)


def test_reprocess_is_idempotent(controller, reference, noise_image):
    run(controller, reference, [(1, noise_image(30, 200))])
    first = controller.reprocess(1, 80, 20)
    second = controller.reprocess(1, 80, 20)
    assert first == second
    assert controller.parameters(1) == ProcessingParameters(80, 20)


def test_reprocess_uses_cached_statistics(controller, reference, noise_image, monkeypatch):
    run(controller, reference, [(1, noise_image(30, 200))])
    expected = controller.reprocess(1, 70, 30)

    def fail(*args, **kwargs):
        raise AssertionError("statistics extracted during reprocess")

    monkeypatch.setattr(batch_controller, 'extract_statistics', fail)
    assert controller.reprocess(1, 70, 30) == expected
    assert controller.render_export(1).size == (40, 30)


def test_batch_matches_reprocess_at_default_parameters(controller, reference, noise_image):
    results = run(controller, reference, [(1, noise_image(30, 200))])
    assert controller.reprocess(1, 50, 50) == results[0].buffer


def test_unknown_id_raises_cache_miss(controller):
    with pytest.raises(CacheMissError):
        controller.reprocess(99, 50, 50)
    with pytest.raises(CacheMissError):
        controller.render_export(99)
    with pytest.raises(CacheMissError):
        controller.statistics(99)


def test_new_batch_invalidates_previous_cache(controller, reference, noise_image):
    run(controller, reference, [(1, noise_image(30, 200))])
    run(controller, noise_image(0, 100, seed=50), [(2, noise_image(30, 200))])

    assert controller.image_ids() == [2]
    with pytest.raises(CacheMissError):
        controller.reprocess(1, 50, 50)


def test_new_reference_changes_results(controller, reference, noise_image):
    target = noise_image(30, 200, seed=6)
    first = run(controller, reference, [(1, target)])[0]
    second = run(controller, noise_image(0, 90, seed=7), [(1, target)])[0]
    assert first.buffer != second.buffer


def test_statistics_diagnostics(controller, reference, noise_image):
    target = noise_image(30, 200, seed=8)
    run(controller, reference, [(1, target)])

    target_stats, reference_stats = controller.statistics(1)
    assert target_stats == extract_statistics(target.resized_to_long_edge(32))
    assert reference_stats == extract_statistics(reference.resized_to_long_edge(32))
    assert controller.reference_statistics == reference_stats


def test_render_export_uses_export_tier(controller, reference, noise_image):
    target = noise_image(30, 200, seed=10)
    run(controller, reference, [(1, target)])

    exported = controller.render_export(1)
    assert exported.size == (40, 30)
    assert controller.render_export(1, export_edge_px=1000).size == (64, 48)

    untouched = controller.render_export(1, intensity=0, shadow_strength=0)
    assert untouched == target.resized_to_long_edge(40)


def test_export_follows_current_parameters(controller, reference, noise_image):
    run(controller, reference, [(1, noise_image(30, 200, seed=11))])
    before = controller.render_export(1)
    controller.reprocess(1, 0, 0)
    after = controller.render_export(1)
    assert before != after


def test_export_all_in_submission_order(controller, reference, noise_image):
    run(controller, reference, [(4, noise_image(30, 200, seed=1)), (2, noise_image(30, 200, seed=2))])
    results = list(controller.export_all())
    assert [r.image_id for r in results] == [4, 2]
    assert all(r.ok and r.buffer.size == (40, 30) for r in results)


def test_neutral_match_returns_analysis_buffer(controller, solid_image):
    gray = solid_image((128, 128, 128))
    results = run(controller, gray, [(1, gray)], default_shadow=0)
    assert results[0].buffer == gray
    for intensity in (0, 25, 100):
        assert controller.reprocess(1, intensity, 0) == gray


def test_out_of_range_parameters(controller, reference, noise_image):
    run(controller, reference, [(1, noise_image(30, 200))])
    with pytest.raises(ValueError):
        controller.reprocess(1, 101, 50)
    with pytest.raises(ValueError):
        controller.reprocess(1, 50, -1)
    with pytest.raises(ValueError):
        next(controller.process_batch(reference, [], default_intensity=150))


def test_invalidate(controller, reference, noise_image):
    run(controller, reference, [(1, noise_image(30, 200)), (2, noise_image(30, 200, seed=2))])
    controller.invalidate(1)
    assert controller.image_ids() == [2]

    controller.invalidate()
    assert controller.image_ids() == []
    assert controller.reference_statistics is None


def test_config_defaults():
    controller = BatchController()
    assert controller.analysis_edge_px == DEFAULT_ANALYSIS_EDGE_PX
    assert controller.default_parameters == ProcessingParameters(50, 50)
    assert not controller.link_chroma

    configured = BatchController({'engine': {'default_intensity': 70, 'default_shadow_strength': 10}})
    assert configured.default_parameters == ProcessingParameters(70, 10)


def test_partial_alpha_is_kept(controller, reference):
    pixels = np.full((10, 10, 4), 150, dtype=np.uint8)
    pixels[:, :5, 3] = 0
    results = run(controller, reference, [(1, ImageBuffer(pixels))])
    assert np.array_equal(results[0].buffer.alpha, pixels[:, :, 3])
