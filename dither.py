"""
dither.py
Модуль дизеринга: диффузия ошибки (6 ядер) и упорядоченный Bayer 8x8.
"""
import logging
import math
from typing import List

import numpy as np

from config import DitherConfig, InvalidConfiguration
from pixel_buffer import PixelBuffer, clamp_to_bytes

logger = logging.getLogger(__name__)

# Имя -> (делитель, ((dx, dy, вес), ...)). Ошибка уходит только вперед/вниз.
DIFFUSION_KERNELS = {
    "floyd-steinberg": (16, (
        (1, 0, 7),
        (-1, 1, 3), (0, 1, 5), (1, 1, 1),
    )),
    # Atkinson раздает только 6/8 ошибки
    "atkinson": (8, (
        (1, 0, 1), (2, 0, 1),
        (-1, 1, 1), (0, 1, 1), (1, 1, 1),
        (0, 2, 1),
    )),
    "burkes": (32, (
        (1, 0, 8), (2, 0, 4),
        (-2, 1, 2), (-1, 1, 4), (0, 1, 8), (1, 1, 4), (2, 1, 2),
    )),
    "sierra": (32, (
        (1, 0, 5), (2, 0, 3),
        (-2, 1, 2), (-1, 1, 4), (0, 1, 5), (1, 1, 4), (2, 1, 2),
        (-1, 2, 2), (0, 2, 3), (1, 2, 2),
    )),
    "sierra-lite": (4, (
        (1, 0, 2),
        (-1, 1, 1), (0, 1, 1),
    )),
    "stucki": (42, (
        (1, 0, 8), (2, 0, 4),
        (-2, 1, 2), (-1, 1, 4), (0, 1, 8), (1, 1, 4), (2, 1, 2),
        (-2, 2, 1), (-1, 2, 2), (0, 2, 4), (1, 2, 2), (2, 2, 1),
    )),
}

# Алгоритмы, которые умеют сканировать змейкой
SERPENTINE_ALGORITHMS = ("floyd-steinberg",)

BAYER_MATRIX = np.array([
    [0, 48, 12, 60, 3, 51, 15, 63],
    [32, 16, 44, 28, 35, 19, 47, 31],
    [8, 56, 4, 52, 11, 59, 7, 55],
    [40, 24, 36, 20, 43, 27, 39, 23],
    [2, 50, 14, 62, 1, 49, 13, 61],
    [34, 18, 46, 30, 33, 17, 45, 29],
    [10, 58, 6, 54, 9, 57, 5, 53],
    [42, 26, 38, 22, 41, 25, 37, 21],
], dtype=np.float64)


def quantize(value: float, palette_size: int, threshold: float = 255) -> float:
    """
    Квантование к одному из palette_size равномерных уровней.
    threshold задает точку перехода: 255 = floor, 127.5 = ближайший уровень.
    """
    if palette_size <= 1:
        return 0.0
    step = 255.0 / (palette_size - 1)
    bias = step * (255.0 - threshold) / 255.0
    level = math.floor((value + bias) / step)
    level = min(max(level, 0), palette_size - 1)
    return min(255.0, level * step)


def bayer_thresholds(width: int, height: int) -> np.ndarray:
    """Карта порогов (m + 0.5) * 255/64, размноженная на весь кадр."""
    reps_y = -(-height // 8)
    reps_x = -(-width // 8)
    tiled = np.tile(BAYER_MATRIX, (reps_y, reps_x))[:height, :width]
    return (tiled + 0.5) * 255.0 / 64.0


class DitherEngine:
    def __init__(self, config: DitherConfig):
        self.cfg = config

    def dither(self, buffer: PixelBuffer) -> PixelBuffer:
        algorithm = self.cfg.ALGORITHM
        logger.debug("Dithering %dx%d with %s", buffer.width, buffer.height, self.cfg.as_options())

        if algorithm == "bayer":
            result = self._bayer(buffer)
        elif algorithm in DIFFUSION_KERNELS:
            result = self._error_diffusion(buffer, algorithm)
        else:
            raise InvalidConfiguration(f"Неизвестный алгоритм: {algorithm!r}")

        logger.debug("Dither algorithm completed: %s", algorithm)
        return result

    def _bayer(self, buffer: PixelBuffer) -> PixelBuffer:
        thresholds = bayer_thresholds(buffer.width, buffer.height)
        binary = np.where(buffer.rgb > thresholds[:, :, None], 255, 0)
        return buffer.with_rgb(binary)

    def _error_diffusion(self, buffer: PixelBuffer, algorithm: str) -> PixelBuffer:
        serpentine = self.cfg.SERPENTINE and algorithm in SERPENTINE_ALGORITHMS
        rgb = buffer.rgb
        out = np.empty(rgb.shape, dtype=np.float64)

        # Каналы независимы; у серого изображения они совпадают -> один проход
        done = []
        for c in range(3):
            plane = rgb[:, :, c]
            for prev in done:
                if np.array_equal(plane, rgb[:, :, prev]):
                    out[:, :, c] = out[:, :, prev]
                    break
            else:
                out[:, :, c] = self._diffuse_plane(plane, algorithm, serpentine)
                done.append(c)

        return PixelBuffer(buffer.width, buffer.height,
                           np.dstack([clamp_to_bytes(out), buffer.alpha]))

    def _diffuse_plane(self, plane: np.ndarray, algorithm: str, serpentine: bool) -> np.ndarray:
        """
        Последовательный проход с накоплением ошибки.
        Работаем по спискам Python: поэлементный доступ к numpy здесь в разы медленнее.
        """
        divisor, taps = DIFFUSION_KERNELS[algorithm]
        taps = [(dx, dy, weight / divisor) for dx, dy, weight in taps]
        mirrored = [(-dx, dy, w) for dx, dy, w in taps]

        palette = int(self.cfg.PALETTE_SIZE)
        threshold = float(self.cfg.THRESHOLD)
        intensity = float(self.cfg.INTENSITY)

        height, width = plane.shape
        rows: List[List[float]] = plane.astype(np.float64).tolist()

        for y in range(height):
            if serpentine and y % 2 == 1:
                xs = range(width - 1, -1, -1)
                kernel = mirrored
            else:
                xs = range(width)
                kernel = taps

            row = rows[y]
            for x in xs:
                old = row[x]
                new = quantize(old, palette, threshold)
                row[x] = new
                err = (old - new) * intensity
                if err == 0:
                    continue

                for dx, dy, w in kernel:
                    nx = x + dx
                    ny = y + dy
                    # Ошибка за краем кадра теряется
                    if 0 <= nx < width and ny < height:
                        target = rows[ny]
                        # Запись в байтовый буфер: округление + обрезка
                        v = round(target[nx] + err * w)
                        target[nx] = 0 if v < 0 else (255 if v > 255 else v)

        return np.array(rows, dtype=np.float64)
