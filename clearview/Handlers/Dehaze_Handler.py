"""Dehaze Handler — single-image haze removal with the dark channel prior.

Pipeline per frame (all math in float32):

    1. normalize the BGR image to [0, 1]
    2. dark channel: per-pixel channel minimum, eroded over a square window
    3. atmospheric light: mean color of the brightest 0.1% dark-channel pixels
    4. transmission estimate: 1 - omega * dark_channel(image / A)
    5. refinement: guided filter with the grayscale frame as guide
    6. recovery: (I - A) / max(t, t0) + A
    7. scale back to 0..255 and saturate to uint8
"""
import cv2
import numpy as np

from clearview.utils.constants import (
    ATMOSPHERIC_FRACTION, DEFAULT_DARK_WINDOW, DEFAULT_GUIDED_EPS,
    DEFAULT_GUIDED_RADIUS, DEFAULT_OMEGA, DEFAULT_T0,
)
from clearview.utils.failures import DehazeError
from clearview.utils.logger import Logger


def to_unit_float(image: np.ndarray) -> np.ndarray:
    return image.astype(np.float32) / np.float32(255.0)


def saturate_u8(image: np.ndarray) -> np.ndarray:
    """Round half to even and clamp into uint8, as OpenCV's saturate_cast does."""
    return np.clip(np.rint(image), 0, 255).astype(np.uint8)


def dark_channel(image: np.ndarray, size: int = DEFAULT_DARK_WINDOW) -> np.ndarray:
    """
    Per-pixel channel minimum followed by a ``size`` x ``size`` erosion.

    Args:
        image: HxWx3 float32 image.
        size: Side of the square structuring element.
    """
    min_channel = np.min(image, axis=2)
    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (size, size))
    return cv2.erode(min_channel, kernel)


def atmospheric_light(image: np.ndarray, dark: np.ndarray) -> np.ndarray:
    """Average color of the ``max(pixels // 1000, 1)`` haziest pixels."""
    pixels = dark.size
    count = max(pixels // ATMOSPHERIC_FRACTION, 1)

    flat_dark = dark.reshape(pixels)
    flat_image = image.reshape(pixels, 3)
    brightest = np.argsort(flat_dark, kind="stable")[pixels - count:]
    return flat_image[brightest].mean(axis=0, dtype=np.float32)


def estimate_transmission(image: np.ndarray, light: np.ndarray,
                          size: int = DEFAULT_DARK_WINDOW,
                          omega: float = DEFAULT_OMEGA) -> np.ndarray:
    # A zero channel in the light estimate (all-black frame) would divide by zero.
    safe_light = np.maximum(light, np.float32(1e-6)).astype(np.float32)
    normalized = image / safe_light
    return np.float32(1.0) - np.float32(omega) * dark_channel(normalized, size)


def guided_filter(guide: np.ndarray, src: np.ndarray,
                  radius: int = DEFAULT_GUIDED_RADIUS,
                  eps: float = DEFAULT_GUIDED_EPS) -> np.ndarray:
    """
    Edge-preserving smoothing of ``src`` steered by a grayscale ``guide``.

    ``radius`` is used directly as the box-filter side length.
    """
    ksize = (radius, radius)

    def box(x: np.ndarray) -> np.ndarray:
        return cv2.boxFilter(x, cv2.CV_32F, ksize)

    mean_i = box(guide)
    mean_t = box(src)
    cov_it = box(guide * src) - mean_i * mean_t
    var_i = box(guide * guide) - mean_i * mean_i

    a = cov_it / (var_i + np.float32(eps))
    b = mean_t - a * mean_i
    return box(a) * guide + box(b)


def refine_transmission(source: np.ndarray, transmission: np.ndarray,
                        radius: int = DEFAULT_GUIDED_RADIUS,
                        eps: float = DEFAULT_GUIDED_EPS) -> np.ndarray:
    gray = to_unit_float(cv2.cvtColor(source, cv2.COLOR_BGR2GRAY))
    return guided_filter(gray, transmission, radius, eps)


def recover(image: np.ndarray, transmission: np.ndarray, light: np.ndarray,
            t0: float = DEFAULT_T0) -> np.ndarray:
    """
    Invert the haze model. ``transmission`` is clamped to [t0, 1] first.

    The upper bound departs from the textbook recovery, which applies only
    the ``max(t, t0)`` floor; where the guided filter overshoots 1 the two
    give slightly different pixels.
    """
    t = np.clip(transmission, np.float32(t0), np.float32(1.0))[..., np.newaxis]
    return (image - light) / t + light


class DehazeHandler:
    """Dark-channel-prior dehazer with tunable parameters."""

    def __init__(
        self,
        window_size: int = DEFAULT_DARK_WINDOW,
        omega: float = DEFAULT_OMEGA,
        t0: float = DEFAULT_T0,
        guided_radius: int = DEFAULT_GUIDED_RADIUS,
        guided_eps: float = DEFAULT_GUIDED_EPS,
    ):
        if window_size < 1 or guided_radius < 1:
            raise ValueError("window_size and guided_radius must be positive")
        if not 0.0 < t0 <= 1.0:
            raise ValueError(f"t0 must be in (0, 1], got {t0}")

        self.window_size = window_size
        self.omega = omega
        self.t0 = t0
        self.guided_radius = guided_radius
        self.guided_eps = guided_eps
        self.logger = Logger("DehazeHandler")

    def _estimate(self, source: np.ndarray):
        image = to_unit_float(source)
        light = atmospheric_light(image, dark_channel(image, self.window_size))
        estimated = estimate_transmission(image, light, self.window_size, self.omega)
        refined = refine_transmission(source, estimated, self.guided_radius, self.guided_eps)
        return image, light, refined

    def transmission_map(self, source: np.ndarray) -> np.ndarray:
        """Refined transmission clamped to [t0, 1], as used for recovery."""
        _, _, refined = self._estimate(source)
        return np.clip(refined, np.float32(self.t0), np.float32(1.0))

    def dehaze(self, source: np.ndarray) -> np.ndarray:
        """
        Remove haze from a BGR uint8 frame.

        Returns:
            A new uint8 array of the same shape; ``source`` is not modified.
            Zero-size frames are returned as-is.

        Raises:
            DehazeError: if the frame is not a 3-channel image.
        """
        if source.size == 0:
            self.logger.warning(f"Zero-size frame {source.shape}; passing through")
            return source
        if source.ndim != 3 or source.shape[2] != 3:
            raise DehazeError(f"Expected a 3-channel image, got shape {source.shape}")
        if source.dtype != np.uint8:
            raise DehazeError(f"Expected 8-bit pixels, got {source.dtype}")

        image, light, refined = self._estimate(source)
        recovered = recover(image, refined, light, self.t0)

        return saturate_u8(recovered * np.float32(255.0))
