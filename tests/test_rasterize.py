import numpy as np
import pytest
from PIL import Image

from index_overlay.models import BoundingBox
from index_overlay.services.compositor import composite_layers
from index_overlay.services.errors import CompositeError
from index_overlay.services.rasterize import mask_coverage, rasterize_polygon

BOUNDS = BoundingBox(min_lat=0.0, max_lat=1.0, min_lng=0.0, max_lng=1.0)
CENTRAL_SQUARE = [(0.25, 0.25), (0.25, 0.75), (0.75, 0.75), (0.75, 0.25)]


@pytest.mark.parametrize("supersample", [1, 4])
@pytest.mark.parametrize("size", [(200, 200), (640, 480)])
def test_central_square_covers_a_quarter_of_the_mask(size, supersample):
    width, height = size

    mask = rasterize_polygon(CENTRAL_SQUARE, BOUNDS, width, height, supersample=supersample)

    assert mask.mode == "L"
    assert mask.size == (width, height)
    assert mask_coverage(mask) == pytest.approx(0.25, abs=0.02)


def test_mask_is_zero_outside_and_full_inside():
    mask = np.asarray(rasterize_polygon(CENTRAL_SQUARE, BOUNDS, 200, 200))

    assert mask[0, 0] == 0
    assert mask[10, 190] == 0
    assert mask[199, 199] == 0
    assert mask[100, 100] == 255
    assert mask[60, 140] == 255


def test_binary_mask_only_contains_two_values():
    mask = np.asarray(rasterize_polygon(CENTRAL_SQUARE, BOUNDS, 120, 120, supersample=1))

    assert set(np.unique(mask).tolist()) <= {0, 255}


def test_supersampled_mask_softens_diagonal_edges():
    triangle = [(0.1, 0.1), (0.9, 0.1), (0.9, 0.9)]

    mask = np.asarray(rasterize_polygon(triangle, BOUNDS, 100, 100, supersample=4))

    partial = np.count_nonzero((mask > 0) & (mask < 255))
    assert partial > 0


def test_degenerate_polygon_cannot_be_rasterized():
    with pytest.raises(CompositeError):
        rasterize_polygon([(0.1, 0.1), (0.5, 0.5)], BOUNDS, 50, 50)


LEFT_HALF = [(0.0, 0.0), (1.0, 0.0), (1.0, 0.5), (0.0, 0.5)]


@pytest.mark.parametrize("supersample", [1, 4])
def test_edges_on_pixel_boundaries_do_not_spill(supersample):
    mask = np.asarray(rasterize_polygon(LEFT_HALF, BOUNDS, 100, 100, supersample=supersample))

    assert (mask[:, :50] == 255).all()
    assert (mask[:, 50:] == 0).all()


def test_central_square_covers_exactly_its_pixels():
    mask = np.asarray(rasterize_polygon(CENTRAL_SQUARE, BOUNDS, 100, 100, supersample=1))

    assert np.count_nonzero(mask) == 2500
    assert mask[25, 25] == 255
    assert mask[74, 74] == 255
    assert mask[75, 50] == 0
    assert mask[50, 75] == 0


def test_left_half_polygon_leaves_right_half_of_composite_untouched():
    base_pixels = np.zeros((100, 100, 4), dtype=np.uint8)
    base_pixels[..., 0] = np.arange(100, dtype=np.uint8)[None, :] * 2
    base_pixels[..., 1] = np.arange(100, dtype=np.uint8)[:, None] * 2
    base_pixels[..., 2] = 90
    base_pixels[..., 3] = 255
    base = Image.fromarray(base_pixels)
    overlay = Image.new("RGBA", (100, 100), (255, 255, 255, 255))
    mask = rasterize_polygon(LEFT_HALF, BOUNDS, 100, 100)

    result = np.asarray(composite_layers(base, overlay, mask, 0.5)).astype(int)

    assert (result[:, 50:] == base_pixels[:, 50:]).all()
    expected_left = base_pixels[:, :50, :3] * 0.5 + 255 * 0.5
    assert np.abs(result[:, :50, :3] - expected_left).max() <= 1
