"""
Tests for view configuration and equirectangular to rectilinear extraction.
"""
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest
from PIL import Image

from ..assembler import assemble
from ..core import TileResult, TileState
from ..errors import EmptySourceBuffer, InvalidViewConfig
from ..grid import TileCoordinate, resolve
from ..views import Direction, ViewConfig, extract_all, extract_view, sample_bilinear


def random_source(width=128, height=64, seed=0):
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)


def column_bands(width=128, height=64):
    """Red on the left edge, blue on the right edge, green in between."""
    arr = np.zeros((height, width, 3), dtype=np.uint8)
    arr[:, :] = (0, 255, 0)
    arr[:, : width // 8] = (255, 0, 0)
    arr[:, width - width // 8:] = (0, 0, 255)
    return arr


def test_view_config_defaults():
    config = ViewConfig()
    assert (config.heading, config.pitch, config.fov) == (0.0, 0.0, 90.0)
    assert (config.width, config.height) == (640, 640)


@pytest.mark.parametrize("heading, expected", [(370, 10.0), (-90, 270.0), (360, 0.0), (720.5, 0.5), (359.5, 359.5)])
def test_view_config_wraps_heading(heading, expected):
    assert ViewConfig(heading=heading).heading == pytest.approx(expected)


@pytest.mark.parametrize("kwargs", [
    {"pitch": 90.5},
    {"pitch": -91},
    {"fov": 0},
    {"fov": -10},
    {"fov": 170.1},
    {"width": 0},
    {"height": -5},
    {"width": 12.5},
    {"height": True},
    {"heading": float("nan")},
    {"pitch": float("inf")},
    {"fov": "90"},
])
def test_view_config_rejects_out_of_range(kwargs):
    with pytest.raises(InvalidViewConfig):
        ViewConfig(**kwargs)


def test_view_config_bounds_inclusive():
    ViewConfig(pitch=90, fov=170)
    ViewConfig(pitch=-90, fov=0.01, width=1, height=1)


def test_invalid_view_config_is_value_error():
    with pytest.raises(ValueError):
        ViewConfig(pitch=100)


def test_view_config_is_immutable():
    config = ViewConfig()
    with pytest.raises(AttributeError):
        config.heading = 10


def test_view_config_with_methods_validate():
    config = ViewConfig().with_heading(45).with_pitch(10).with_fov(120).with_size(800, 600)

    assert (config.heading, config.pitch, config.fov, config.width, config.height) == (45, 10, 120, 800, 600)
    with pytest.raises(InvalidViewConfig):
        config.with_pitch(120)


def test_direction_headings():
    assert Direction.FRONT.heading == 0
    assert Direction.RIGHT.heading == 90
    assert Direction.BACK.heading == 180
    assert Direction.LEFT.heading == 270
    assert [d.label for d in Direction] == ["front", "right", "back", "left"]


def test_view_config_from_direction():
    config = ViewConfig.from_direction(Direction.LEFT, fov=60, width=100, height=50)
    assert (config.heading, config.fov, config.width, config.height) == (270, 60, 100, 50)


def test_extract_output_size_and_mode():
    view = extract_view(random_source(), ViewConfig(width=33, height=21))
    assert isinstance(view, Image.Image)
    assert view.size == (33, 21)
    assert view.mode == "RGB"


def test_extract_keeps_channel_layout():
    gray = random_source()[..., 0]
    rgba = np.dstack([random_source(), np.full((64, 128), 255, dtype=np.uint8)])

    assert extract_view(gray, ViewConfig(width=8, height=8)).mode == "L"
    assert extract_view(rgba, ViewConfig(width=8, height=8)).mode == "RGBA"


def test_extract_accepts_pil_and_panorama():
    src = random_source(width=1024, height=512)
    tiles = [
        TileResult(TileCoordinate(x, 0), TileState.SUCCEEDED, Image.fromarray(src[:, x * 512:(x + 1) * 512]))
        for x in range(2)
    ]
    panorama = assemble(resolve(1), tiles)
    config = ViewConfig(heading=30, pitch=-20, fov=75, width=24, height=16)

    expected = np.asarray(extract_view(src, config))
    assert np.array_equal(np.asarray(extract_view(Image.fromarray(src), config)), expected)
    assert np.array_equal(np.asarray(extract_view(panorama, config)), expected)


@pytest.mark.parametrize("shape", [(0, 0, 3), (10, 0, 3), (0, 20, 3)])
def test_extract_empty_source(shape):
    with pytest.raises(EmptySourceBuffer):
        extract_view(np.zeros(shape, dtype=np.uint8), ViewConfig(width=4, height=4))


@pytest.mark.parametrize("heading", [0, 0.1, 45, 123.456, 270, -45])
def test_extract_periodic_in_heading(heading):
    src = random_source()
    config = ViewConfig(pitch=5, fov=80, width=16, height=12)

    a = extract_view(src, config.with_heading(heading))
    b = extract_view(src, config.with_heading(heading + 360))

    assert np.array_equal(np.asarray(a), np.asarray(b))


def test_extract_center_reproduces_source_center():
    src = random_source(width=128, height=64)

    view = extract_view(src, ViewConfig(heading=0, pitch=0, fov=1, width=5, height=5))

    assert tuple(np.asarray(view)[2, 2]) == tuple(src[32, 64])


def test_extract_narrow_view_of_uniform_region():
    src = np.zeros((64, 128, 3), dtype=np.uint8)
    src[24:40, 56:72] = (10, 200, 30)

    view = np.asarray(extract_view(src, ViewConfig(fov=5, width=9, height=9)))

    assert np.all(view == (10, 200, 30))


def test_extract_gradient_band_centered():
    width, height = 4096, 2048
    gradient = (np.arange(width) * 255.0 / (width - 1)).astype(np.uint8)
    src = np.repeat(np.repeat(gradient[None, :, None], height, axis=0), 3, axis=2)

    view = np.asarray(extract_view(src, ViewConfig(heading=0, pitch=0, fov=90, width=100, height=100)))[..., 0].astype(int)

    center_value = int(gradient[width // 2])
    assert abs(view[:, 49:51].mean() - center_value) <= 2
    # each output column samples one longitude at zero pitch
    assert np.all(np.ptp(view, axis=0) <= 1)
    # fov 90 spans roughly columns 1536..2560
    assert abs(view[:, 0].mean() - gradient[1536]) <= 3
    assert abs(view[:, -1].mean() - gradient[2560]) <= 3
    assert np.all(np.diff(view[50]) >= 0)


def test_extract_wraps_across_seam():
    src = column_bands()

    view = np.asarray(extract_view(src, ViewConfig(heading=180, fov=90, width=20, height=10)))

    # left half of the view looks at the right edge of the source, right half at the left edge
    assert np.all(view[:, 0:9] == (0, 0, 255))
    assert np.all(view[:, 11:19] == (255, 0, 0))


def test_extract_front_view_avoids_seam():
    view = np.asarray(extract_view(column_bands(), ViewConfig(heading=0, fov=90, width=20, height=10)))
    assert np.all(view == (0, 255, 0))


def test_extract_heading_turns_right():
    src = np.zeros((64, 128, 3), dtype=np.uint8)
    src[:, 96:100] = 255  # longitude +90..+101 degrees

    right = np.asarray(extract_view(src, ViewConfig(heading=95, fov=10, width=9, height=9)))
    left = np.asarray(extract_view(src, ViewConfig(heading=265, fov=10, width=9, height=9)))

    assert right[4, 4].tolist() == [255, 255, 255]
    assert not left.any()


@pytest.mark.parametrize("pitch, rows", [(90, slice(0, 16)), (-90, slice(48, 64))])
def test_extract_pole_views(pitch, rows):
    src = np.zeros((64, 128, 3), dtype=np.uint8)
    src[rows] = (250, 250, 250)

    view = np.asarray(extract_view(src, ViewConfig(heading=37, pitch=pitch, fov=60, width=15, height=15)))

    assert np.all(view == 250)


def test_sample_bilinear_wraps_horizontally_and_clamps_vertically():
    src = np.zeros((4, 4, 1), dtype=np.uint8)
    src[:, 0] = 100
    src[:, 3] = 200

    # halfway between the last and first column
    assert sample_bilinear(src, np.array([3.5]), np.array([1.0]))[0, 0] == pytest.approx(150)
    # negative u wraps to the right edge
    assert sample_bilinear(src, np.array([-1.0]), np.array([1.0]))[0, 0] == pytest.approx(200)
    # v beyond the bottom is clamped, not wrapped
    assert sample_bilinear(src, np.array([0.0]), np.array([10.0]))[0, 0] == pytest.approx(100)


def test_sample_bilinear_interpolates():
    src = np.array([[[0], [100]], [[50], [150]]], dtype=np.uint8)
    assert sample_bilinear(src, np.array([0.5]), np.array([0.5]))[0, 0] == pytest.approx((0 + 100 + 50 + 150) / 4)


@pytest.mark.parametrize("count", [0, 1, 4])
def test_extract_all_matches_sequential(count):
    src = random_source()
    configs = [ViewConfig(heading=i * 77, pitch=i * 10 - 15, fov=60 + i * 10, width=12 + i, height=10) for i in range(count)]

    batch = extract_all(src, configs)

    assert len(batch) == count
    for config, view in zip(configs, batch):
        assert view.size == (config.width, config.height)
        assert np.array_equal(np.asarray(view), np.asarray(extract_view(src, config)))


def test_extract_all_with_executor():
    src = random_source()
    configs = [ViewConfig.from_direction(d, width=8, height=8) for d in Direction]

    with ThreadPoolExecutor(max_workers=2) as executor:
        views = extract_all(src, configs, executor=executor)

    assert [np.asarray(v).tolist() for v in views] == [np.asarray(extract_view(src, c)).tolist() for c in configs]


def test_extract_all_empty_source():
    with pytest.raises(EmptySourceBuffer):
        extract_all(np.zeros((0, 0, 3), dtype=np.uint8), [ViewConfig()])
