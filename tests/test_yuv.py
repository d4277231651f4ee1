import numpy as np
import pytest

from cadmatch.core.errors import FrameError, FrameErrorKind
from cadmatch.io.yuv import YuvImage, to_nv21, yuv_to_rgb


def gradient_rgb(h=32, w=48):
    y, x = np.mgrid[0:h, 0:w]
    rgb = np.stack([x * 5 % 256, y * 7 % 256, np.full_like(x, 90)], axis=-1)
    return rgb.astype(np.uint8)


def semi_planar(image: YuvImage) -> YuvImage:
    """Re-pack planar chroma the way most camera HALs expose it (pixel stride 2)."""
    h, w = image.height, image.width
    u = image.u.reshape(h // 2, w // 2)
    v = image.v.reshape(h // 2, w // 2)
    vu = np.empty((h // 2, w), dtype=np.uint8)
    vu[:, 0::2] = v
    vu[:, 1::2] = u
    uv = np.empty((h // 2, w), dtype=np.uint8)
    uv[:, 0::2] = u
    uv[:, 1::2] = v
    return YuvImage(
        y=image.y,
        u=uv.ravel()[:-1],
        v=vu.ravel()[:-1],
        width=w,
        height=h,
        y_row_stride=w,
        uv_row_stride=w,
        uv_pixel_stride=2,
    )


def test_uniform_colour_survives_conversion():
    rgb = np.zeros((16, 16, 3), dtype=np.uint8)
    rgb[:] = (180, 60, 30)

    out = yuv_to_rgb(YuvImage.from_rgb(rgb))

    assert out.shape == (16, 16, 3)
    assert np.abs(out.astype(int) - rgb.astype(int)).max() <= 3


def test_semi_planar_and_planar_agree():
    planar = YuvImage.from_rgb(gradient_rgb())

    np.testing.assert_array_equal(to_nv21(planar), to_nv21(semi_planar(planar)))
    np.testing.assert_array_equal(yuv_to_rgb(planar), yuv_to_rgb(semi_planar(planar)))


def test_row_padding_is_ignored():
    planar = YuvImage.from_rgb(gradient_rgb(8, 8))
    padded_y = np.zeros((8, 12), dtype=np.uint8)
    padded_y[:, :8] = planar.y.reshape(8, 8)
    padded = YuvImage(
        y=padded_y.ravel(),
        u=planar.u,
        v=planar.v,
        width=8,
        height=8,
        y_row_stride=12,
        uv_row_stride=4,
        uv_pixel_stride=1,
    )

    np.testing.assert_array_equal(to_nv21(padded), to_nv21(planar))


def test_unsupported_pixel_stride():
    image = YuvImage.from_rgb(gradient_rgb(8, 8))
    image.uv_pixel_stride = 3

    with pytest.raises(FrameError) as excinfo:
        yuv_to_rgb(image)
    assert excinfo.value.kind is FrameErrorKind.UNSUPPORTED_FORMAT


def test_short_plane_rejected():
    image = YuvImage.from_rgb(gradient_rgb(8, 8))
    image.y = image.y[:10]

    with pytest.raises(FrameError):
        to_nv21(image)


def test_odd_size_rejected():
    with pytest.raises(FrameError):
        YuvImage.from_rgb(np.zeros((5, 6, 3), dtype=np.uint8))


def test_arrays_pass_through():
    rgb = gradient_rgb()
    gray = rgb[:, :, 0].copy()

    assert yuv_to_rgb(rgb) is rgb
    assert yuv_to_rgb(gray).shape == rgb.shape
    with pytest.raises(FrameError):
        yuv_to_rgb(rgb.astype(np.float32))
    with pytest.raises(FrameError):
        yuv_to_rgb("not an image")
