"""
Tests for receipt image preprocessing.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import numpy as np
import pytest
from PIL import Image

from offline_receipt.errors import PreprocessingError, ProcessingError
from offline_receipt.services import preprocess
from offline_receipt.services.preprocess import (
    CJK_THRESHOLD,
    LATIN_THRESHOLD,
    ImagePreprocessor,
    adaptive_threshold,
    box_blur,
    detect_cjk_content,
    equalize_histogram,
    integral_image,
    rotate_image,
    rotation_geometry,
    to_grayscale,
    unsharp_mask,
)
from fakes import png_bytes


class TestPixelStages:

    def test_grayscale_luminance_weights(self):
        rgb = np.zeros((1, 3, 3), dtype=np.uint8)
        rgb[0, 0] = (255, 0, 0)
        rgb[0, 1] = (0, 255, 0)
        rgb[0, 2] = (0, 0, 255)
        assert to_grayscale(rgb).tolist() == [[76, 150, 29]]

    def test_box_blur_keeps_border(self):
        rng = np.random.default_rng(1)
        gray = rng.integers(0, 256, size=(6, 7), dtype=np.uint8)
        blurred = box_blur(gray)

        assert np.array_equal(blurred[0, :], gray[0, :])
        assert np.array_equal(blurred[-1, :], gray[-1, :])
        assert np.array_equal(blurred[:, 0], gray[:, 0])
        assert np.array_equal(blurred[:, -1], gray[:, -1])
        expected = round(gray[1:4, 1:4].astype(float).mean())
        assert blurred[2, 2] == expected

    def test_equalization_stretches_two_levels(self):
        gray = np.zeros((4, 4), dtype=np.uint8)
        gray[:, 2:] = 100
        out = equalize_histogram(gray)
        assert set(np.unique(out).tolist()) == {0, 255}

    def test_equalization_leaves_flat_image(self):
        gray = np.full((5, 5), 128, dtype=np.uint8)
        assert np.array_equal(equalize_histogram(gray), gray)

    def test_unsharp_mask_flat_image_unchanged(self):
        gray = np.full((5, 5), 90, dtype=np.uint8)
        assert np.array_equal(unsharp_mask(gray), gray)

    def test_unsharp_mask_increases_edge_contrast(self):
        gray = np.full((5, 6), 50, dtype=np.uint8)
        gray[:, 3:] = 200
        out = unsharp_mask(gray)
        assert out[2, 2] < 50
        assert out[2, 3] > 200

    def test_integral_image_total(self):
        gray = np.arange(12, dtype=np.uint8).reshape(3, 4)
        integral = integral_image(gray)
        assert integral.shape == (4, 5)
        assert integral[-1, -1] == gray.sum()
        assert integral[2, 2] == gray[:2, :2].sum()


class TestAdaptiveThreshold:

    def test_uniform_image_is_lightened(self):
        gray = np.full((20, 20), 128, dtype=np.uint8)
        # threshold = 128 - 10; 200 + 10 * 0.3
        assert np.all(adaptive_threshold(gray, LATIN_THRESHOLD) == 203)
        # threshold = 128 - 5; 200 + 5 * 0.4
        assert np.all(adaptive_threshold(gray, CJK_THRESHOLD) == 202)

    def test_dark_text_pixel_is_darkened(self):
        gray = np.full((21, 21), 220, dtype=np.uint8)
        gray[10, 10] = 60
        out = adaptive_threshold(gray, LATIN_THRESHOLD)
        assert out[10, 10] == 30

    def test_deterministic(self):
        rng = np.random.default_rng(7)
        gray = rng.integers(0, 256, size=(40, 50), dtype=np.uint8)
        first = adaptive_threshold(gray, LATIN_THRESHOLD)
        second = adaptive_threshold(gray.copy(), LATIN_THRESHOLD)
        assert first.dtype == np.uint8
        assert np.array_equal(first, second)


class TestCJKDetection:

    def test_flat_image_is_not_cjk(self):
        gray = np.full((100, 100), 255, dtype=np.uint8)
        assert detect_cjk_content(gray, np.random.default_rng(0)) is False

    def test_busy_image_is_cjk(self):
        checker = (np.indices((100, 100)).sum(axis=0) % 2 * 255).astype(np.uint8)
        assert detect_cjk_content(checker, np.random.default_rng(0)) is True

    def test_too_small_to_sample(self):
        gray = np.zeros((10, 10), dtype=np.uint8)
        assert detect_cjk_content(gray, np.random.default_rng(0)) is False


class TestRotation:

    def test_quarter_turn_swaps_dimensions(self):
        size, _ = rotation_geometry(100, 50, 90)
        assert size == (50, 100)

    def test_no_rotation_keeps_size(self):
        size, coeffs = rotation_geometry(100, 50, 0)
        assert size == (100, 50)
        assert coeffs == pytest.approx((1, 0, 0, 0, 1, 0))

    def test_diagonal_canvas_grows(self):
        size, _ = rotation_geometry(100, 50, 45)
        assert size == (107, 107)

    def test_rotate_image(self):
        image = Image.new('L', (100, 50), 255)
        rotated = rotate_image(image, 90)
        assert rotated.size == (50, 100)
        assert rotated.mode == 'L'

    def test_surface_allocation_failure(self, monkeypatch):
        image = Image.new('L', (10, 10), 255)

        def fail(*args, **kwargs):
            raise MemoryError()

        monkeypatch.setattr(preprocess.Image.Image, "transform", fail)
        with pytest.raises(PreprocessingError):
            rotate_image(image, 90)


class TestImagePreprocessor:

    def test_scale_size(self):
        pre = ImagePreprocessor(min_side=1500, max_side=3000)
        assert pre.scale_size(500, 1000) == (1500, 3000)
        assert pre.scale_size(4000, 8000) == (3000, 6000)
        assert pre.scale_size(2000, 2500) == (2000, 2500)

    def test_rejects_garbage(self):
        with pytest.raises(ProcessingError):
            ImagePreprocessor().load(b"definitely not an image")

    def test_rejects_empty(self):
        with pytest.raises(ProcessingError):
            ImagePreprocessor().load(b"")

    def test_preprocess_blank_image(self):
        pre = ImagePreprocessor(min_side=100, max_side=200, correct_orientation=False, seed=0)
        result = pre.preprocess(png_bytes((60, 40)))

        assert result.image.mode == 'L'
        assert result.image.size == (150, 100)
        assert result.is_cjk is False
        assert result.rotation == 0.0

    def test_confident_orientation_rotates(self):
        pre = ImagePreprocessor(min_side=100, max_side=200, correct_orientation=True, seed=0)
        result = pre.preprocess(png_bytes((60, 40)), orientation_detector=lambda image: (90.0, 0.9))

        assert result.rotation == -90.0
        assert result.image.size == (100, 150)

    def test_unconfident_orientation_ignored(self):
        pre = ImagePreprocessor(min_side=100, max_side=200, correct_orientation=True, seed=0)
        result = pre.preprocess(png_bytes((60, 40)), orientation_detector=lambda image: (90.0, 0.3))

        assert result.rotation == 0.0
        assert result.image.size == (150, 100)

    def test_busy_image_takes_cjk_path(self):
        checker = (np.indices((100, 100)).sum(axis=0) % 2 * 255).astype(np.uint8)
        image = Image.fromarray(np.stack([checker] * 3, axis=-1))
        pre = ImagePreprocessor(min_side=100, max_side=200, correct_orientation=False, seed=0)

        result = pre.process(image)

        gray = box_blur(to_grayscale(np.asarray(image)))
        expected = adaptive_threshold(equalize_histogram(gray), CJK_THRESHOLD)
        assert result.is_cjk is True
        assert result.image.size == (100, 100)
        assert np.array_equal(np.asarray(result.image), expected)
