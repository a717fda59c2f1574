"""
Image preprocessing for receipt photographs.

Phone photos of receipts are small, noisy and unevenly lit. Every stage
works on a numpy array so each one stays deterministic and testable on its
own. Filters go through OpenCV; decoding and geometry go through Pillow.
"""

import io
import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from offline_receipt.config import settings
from offline_receipt.errors import PreprocessingError, ProcessingError

logger = logging.getLogger(__name__)

LUMA_WEIGHTS = (0.299, 0.587, 0.114)

CJK_PATCH_COUNT = 50
CJK_PATCH_SIZE = 20
CJK_VARIANCE_THRESHOLD = 2000.0
CJK_PATCH_RATIO = 0.3

SHARPEN_AMOUNT = 0.5
ORIENTATION_MIN_CONFIDENCE = 0.5


@dataclass(frozen=True)
class ThresholdParams:
    """Adaptive threshold tuning: window size, offset and soft multipliers."""
    block_size: int
    constant: float
    dark_multiplier: float
    light_multiplier: float


LATIN_THRESHOLD = ThresholdParams(block_size=15, constant=10, dark_multiplier=0.5, light_multiplier=0.3)
# Gentler on CJK glyphs so thin strokes survive
CJK_THRESHOLD = ThresholdParams(block_size=11, constant=5, dark_multiplier=0.7, light_multiplier=0.4)


@dataclass
class PreprocessedImage:
    """Cleaned grayscale image ready for OCR."""
    image: Image.Image
    is_cjk: bool
    rotation: float = 0.0


def _to_uint8(values: np.ndarray) -> np.ndarray:
    return np.clip(np.rint(values), 0, 255).astype(np.uint8)


def to_grayscale(rgb: np.ndarray) -> np.ndarray:
    """Luminance-weighted grayscale of an (H, W, 3) array."""
    rgb = rgb.astype(np.float64)
    r, g, b = LUMA_WEIGHTS
    return _to_uint8(r * rgb[..., 0] + g * rgb[..., 1] + b * rgb[..., 2])


def box_blur(gray: np.ndarray) -> np.ndarray:
    """3x3 mean filter; the one-pixel border is left untouched."""
    height, width = gray.shape
    if height < 3 or width < 3:
        return gray.copy()

    blurred = cv2.blur(gray.astype(np.float64), (3, 3))

    out = gray.copy()
    out[1:-1, 1:-1] = _to_uint8(blurred[1:-1, 1:-1])
    return out


def equalize_histogram(gray: np.ndarray) -> np.ndarray:
    """Global histogram equalisation mapping the lowest occupied level to 0."""
    histogram = np.bincount(gray.ravel(), minlength=256)
    cdf = np.cumsum(histogram)
    total = gray.size
    cdf_min = cdf[np.nonzero(cdf)[0][0]] if total else 0

    # Flat image: nothing to stretch
    if total == cdf_min:
        return gray.copy()

    lut = _to_uint8((cdf - cdf_min) / float(total - cdf_min) * 255.0)
    return lut[gray]


def detect_cjk_content(gray: np.ndarray, rng: np.random.Generator) -> bool:
    """
    Guess whether the image carries CJK text.

    Dense ideographs produce much higher local variance than Latin glyphs,
    so sample random patches and count the busy ones.
    """
    height, width = gray.shape
    if height < CJK_PATCH_SIZE or width < CJK_PATCH_SIZE:
        return False

    busy = 0
    for _ in range(CJK_PATCH_COUNT):
        y = int(rng.integers(0, height - CJK_PATCH_SIZE + 1))
        x = int(rng.integers(0, width - CJK_PATCH_SIZE + 1))
        patch = gray[y:y + CJK_PATCH_SIZE, x:x + CJK_PATCH_SIZE].astype(np.float64)
        if patch.var() > CJK_VARIANCE_THRESHOLD:
            busy += 1

    return busy / CJK_PATCH_COUNT > CJK_PATCH_RATIO


def unsharp_mask(gray: np.ndarray, amount: float = SHARPEN_AMOUNT) -> np.ndarray:
    """original + amount * (original - gaussian3x3(original)); border untouched."""
    height, width = gray.shape
    if height < 3 or width < 3:
        return gray.copy()

    src = gray.astype(np.float64)
    # sigma 0 with a 3x3 window is the [1, 2, 1] / 4 binomial kernel
    blurred = cv2.GaussianBlur(src, (3, 3), 0)[1:-1, 1:-1]

    center = src[1:-1, 1:-1]
    out = gray.copy()
    out[1:-1, 1:-1] = _to_uint8(center + amount * (center - blurred))
    return out


def integral_image(gray: np.ndarray) -> np.ndarray:
    """Summed-area table padded with a leading row and column of zeros."""
    integral = np.zeros((gray.shape[0] + 1, gray.shape[1] + 1), dtype=np.float64)
    integral[1:, 1:] = gray.astype(np.float64).cumsum(axis=0).cumsum(axis=1)
    return integral


def adaptive_threshold(gray: np.ndarray, params: ThresholdParams = LATIN_THRESHOLD) -> np.ndarray:
    """
    Soft adaptive threshold against the local mean.

    Pixels darker than (local mean - C) are darkened, the rest are pushed
    toward white. The local mean comes from the integral image, so each
    pixel costs four lookups whatever the block size.
    """
    height, width = gray.shape
    half = params.block_size // 2
    integral = integral_image(gray)

    ys = np.arange(height)
    xs = np.arange(width)
    y0 = np.maximum(0, ys - half)[:, None]
    y1 = np.minimum(height - 1, ys + half)[:, None]
    x0 = np.maximum(0, xs - half)[None, :]
    x1 = np.minimum(width - 1, xs + half)[None, :]

    window_sum = (integral[y1 + 1, x1 + 1] - integral[y0, x1 + 1]
                  - integral[y1 + 1, x0] + integral[y0, x0])
    count = (x1 - x0 + 1) * (y1 - y0 + 1)
    threshold = window_sum / count - params.constant

    pixels = gray.astype(np.float64)
    dark = pixels * params.dark_multiplier
    light = 200.0 + (pixels - threshold) * params.light_multiplier
    return _to_uint8(np.where(pixels < threshold, dark, light))


def rotation_geometry(width: int, height: int, angle: float) -> Tuple[Tuple[int, int], Tuple[float, ...]]:
    """
    Output size and inverse affine coefficients for a counter-clockwise rotation.

    The canvas grows to hold the whole rotated image:
    |w cos| + |h sin| by |w sin| + |h cos|.
    """
    theta = -math.radians(angle)
    cos_t = math.cos(theta)
    sin_t = math.sin(theta)

    new_width = int(math.ceil(round(abs(width * cos_t) + abs(height * sin_t), 6)))
    new_height = int(math.ceil(round(abs(width * sin_t) + abs(height * cos_t), 6)))

    cx, cy = width / 2.0, height / 2.0
    ncx, ncy = new_width / 2.0, new_height / 2.0
    a, b, d, e = cos_t, sin_t, -sin_t, cos_t
    c = cx - a * ncx - b * ncy
    f = cy - d * ncx - e * ncy
    return (new_width, new_height), (a, b, c, d, e, f)


def rotate_image(image: Image.Image, angle: float) -> Image.Image:
    """
    Rotate a grayscale image counter-clockwise by angle degrees onto a new canvas.

    Raises:
        PreprocessingError: The enlarged drawing surface could not be allocated
    """
    size, coeffs = rotation_geometry(image.width, image.height, angle)
    try:
        return image.convert('L').transform(
            size, Image.Transform.AFFINE, coeffs, resample=Image.Resampling.BICUBIC, fillcolor=255)
    except (MemoryError, ValueError) as e:
        raise PreprocessingError(f"Could not allocate {size[0]}x{size[1]} surface for rotation") from e


class ImagePreprocessor:
    """Turns raw receipt image bytes into a cleaned, bounded grayscale image."""

    def __init__(
        self,
        min_side: Optional[int] = None,
        max_side: Optional[int] = None,
        correct_orientation: Optional[bool] = None,
        seed: Optional[int] = None,
    ):
        self.min_side = min_side or settings.MIN_IMAGE_SIDE
        self.max_side = max_side or settings.MAX_IMAGE_SIDE
        self.correct_orientation = (
            settings.CORRECT_ORIENTATION if correct_orientation is None else correct_orientation)
        self.seed = settings.CJK_SAMPLE_SEED if seed is None else seed

    def load(self, image_data: bytes) -> Image.Image:
        """
        Decode image bytes as RGB, honouring EXIF orientation.

        Raises:
            ProcessingError: Empty, unreadable or unsupported input
        """
        if not image_data:
            raise ProcessingError("Empty image data")

        try:
            image = Image.open(io.BytesIO(image_data))
            image.load()
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            raise ProcessingError(f"Unreadable or unsupported image: {e}") from e

        image = ImageOps.exif_transpose(image)
        if image.mode != 'RGB':
            image = image.convert('RGB')
        return image

    def scale_size(self, width: int, height: int) -> Tuple[int, int]:
        """Target size with the shorter side clamped into [min_side, max_side]."""
        shorter = min(width, height)
        if shorter < self.min_side:
            scale = self.min_side / shorter
        elif shorter > self.max_side:
            scale = self.max_side / shorter
        else:
            return width, height
        return max(1, int(round(width * scale))), max(1, int(round(height * scale)))

    def resize(self, image: Image.Image) -> Image.Image:
        size = self.scale_size(image.width, image.height)
        if size == image.size:
            return image
        return image.resize(size, Image.Resampling.LANCZOS)

    def process(
        self,
        image: Image.Image,
        orientation_detector: Optional[Callable[[Image.Image], Tuple[float, float]]] = None,
    ) -> PreprocessedImage:
        """
        Run the full cleaning pipeline on a decoded image.

        Args:
            image: Decoded RGB image
            orientation_detector: Returns (angle, confidence 0-1) for an image

        Returns:
            PreprocessedImage

        Raises:
            PreprocessingError: Rotation surface could not be allocated
        """
        image = self.resize(image)

        rotation = 0.0
        if self.correct_orientation and orientation_detector is not None:
            angle, confidence = orientation_detector(image)
            if confidence > ORIENTATION_MIN_CONFIDENCE and angle % 360:
                image = rotate_image(image.convert('L'), -angle).convert('RGB')
                rotation = -angle
                logger.debug("Rotated image", extra={"angle": rotation, "confidence": confidence})

        gray = to_grayscale(np.asarray(image.convert('RGB')))
        gray = box_blur(gray)
        gray = equalize_histogram(gray)

        is_cjk = detect_cjk_content(gray, np.random.default_rng(self.seed))
        if is_cjk:
            gray = adaptive_threshold(gray, CJK_THRESHOLD)
        else:
            gray = unsharp_mask(gray)
            gray = adaptive_threshold(gray, LATIN_THRESHOLD)

        logger.debug("Preprocessed image", extra={
            "width": gray.shape[1], "height": gray.shape[0], "is_cjk": is_cjk})

        return PreprocessedImage(image=Image.fromarray(gray), is_cjk=is_cjk, rotation=rotation)

    def preprocess(
        self,
        image_data: bytes,
        orientation_detector: Optional[Callable[[Image.Image], Tuple[float, float]]] = None,
    ) -> PreprocessedImage:
        """Decode and clean raw image bytes."""
        return self.process(self.load(image_data), orientation_detector)
