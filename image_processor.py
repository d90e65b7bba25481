"""
image_processor.py
Модуль предобработки изображений.
Pipeline: Exposure -> Pixelate -> Brightness -> Midtones -> Noise -> Sharpen -> Glow -> Grayscale.
"""
import logging
import math
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from config import DitherConfig
from pixel_buffer import PixelBuffer, clamp_to_bytes, LUMA_WEIGHTS

logger = logging.getLogger(__name__)

SHARPEN_KERNEL = np.array([[0, -1, 0],
                           [-1, 5, -1],
                           [0, -1, 0]], dtype=np.float64)


class ImageProcessor:
    def __init__(self, config: DitherConfig, rng: Optional[np.random.Generator] = None):
        self.cfg = config
        # Источник шума инжектируется, чтобы тесты были детерминированными
        self.rng = rng if rng is not None else np.random.default_rng()

    def load_image(self, path: str) -> PixelBuffer:
        img = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
        if img is None:
            raise FileNotFoundError(f"Файл не найден: {path}")

        if img.dtype == np.uint16:
            img = (img / 257.0).round().astype(np.uint8)

        if img.ndim == 2:
            rgba = cv2.cvtColor(img, cv2.COLOR_GRAY2RGBA)
        elif img.shape[2] == 4:
            rgba = cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)
        else:
            rgba = cv2.cvtColor(img, cv2.COLOR_BGR2RGBA)
        return PixelBuffer.from_array(rgba)

    def save_image(self, buffer: PixelBuffer, path: str, quality: Optional[int] = None):
        """Растровый экспорт. Качество/сжатие относятся только к этому слою."""
        quality = self.cfg.RASTER_QUALITY if quality is None else quality
        ext = Path(path).suffix.lower()

        if ext == ".png":
            img = cv2.cvtColor(buffer.data, cv2.COLOR_RGBA2BGRA)
            params = [cv2.IMWRITE_PNG_COMPRESSION, 9]
        elif ext in (".jpg", ".jpeg"):
            # JPEG без альфы
            img = cv2.cvtColor(buffer.data, cv2.COLOR_RGBA2BGR)
            params = [cv2.IMWRITE_JPEG_QUALITY, int(quality)]
        elif ext == ".webp":
            img = cv2.cvtColor(buffer.data, cv2.COLOR_RGBA2BGRA)
            params = [cv2.IMWRITE_WEBP_QUALITY, int(quality)]
        else:
            raise ValueError(f"Неподдерживаемый формат: {ext or path}")

        if not cv2.imwrite(str(path), img, params):
            raise IOError(f"Не удалось записать файл: {path}")

    def preprocess(self, buffer: PixelBuffer) -> PixelBuffer:
        """
        Цепочка тоновых фильтров. Каждый шаг выполняется, только если его
        параметр отличается от нейтрального. Перевод в серый выполняется всегда.
        """
        cfg = self.cfg

        # 1. EXPOSURE
        if cfg.EXPOSURE != 0:
            buffer = self.apply_exposure(buffer, cfg.EXPOSURE)

        # 2. PIXELATION (мозаика)
        if cfg.PIXELATION_SCALE > 1:
            buffer = self.apply_pixelation(buffer, int(cfg.PIXELATION_SCALE))

        # 3. BRIGHTNESS
        if cfg.BRIGHTNESS != 0:
            buffer = self.apply_brightness(buffer, cfg.BRIGHTNESS)

        # 4. MIDTONES (гамма)
        if cfg.MIDTONES != 1:
            buffer = self.apply_midtones(buffer, cfg.MIDTONES)

        # 5. NOISE
        if cfg.NOISE > 0:
            buffer = self.apply_noise(buffer, cfg.NOISE)

        # Большие изображения: резкость и свечение вдвое слабее
        large = buffer.pixel_count > cfg.LARGE_IMAGE_PIXELS

        # 6. DETAIL ENHANCEMENT
        if cfg.DETAIL_ENHANCEMENT > 0:
            amount = cfg.DETAIL_ENHANCEMENT * 0.5 if large else cfg.DETAIL_ENHANCEMENT
            if large:
                logger.debug("Large image (%d px): sharpen amount %s -> %s",
                             buffer.pixel_count, cfg.DETAIL_ENHANCEMENT, amount)
            buffer = self.apply_sharpen(buffer, amount)

        # 7. GLOW
        if cfg.GLOW > 0:
            amount = cfg.GLOW * 0.5 if large else cfg.GLOW
            if large:
                logger.debug("Large image (%d px): glow amount %s -> %s",
                             buffer.pixel_count, cfg.GLOW, amount)
            buffer = self.apply_glow(buffer, amount)

        # 8. GRAYSCALE (всегда)
        return self.to_grayscale(buffer)

    @staticmethod
    def apply_exposure(buffer: PixelBuffer, exposure: float) -> PixelBuffer:
        factor = 2.0 ** (exposure / 100.0)
        return buffer.with_rgb(buffer.rgb.astype(np.float64) * factor)

    @staticmethod
    def apply_pixelation(buffer: PixelBuffer, scale: int) -> PixelBuffer:
        """Даунскейл усреднением по площади, затем апскейл без сглаживания."""
        w, h = buffer.width, buffer.height
        small_w = max(1, w // scale)
        small_h = max(1, h // scale)
        small = cv2.resize(buffer.data, (small_w, small_h), interpolation=cv2.INTER_AREA)
        blocky = cv2.resize(small, (w, h), interpolation=cv2.INTER_NEAREST)
        return PixelBuffer(w, h, np.ascontiguousarray(blocky, dtype=np.uint8))

    @staticmethod
    def apply_brightness(buffer: PixelBuffer, offset: float) -> PixelBuffer:
        return buffer.with_rgb(buffer.rgb.astype(np.float64) + offset)

    @staticmethod
    def apply_midtones(buffer: PixelBuffer, midtones: float) -> PixelBuffer:
        # max(0.01, ...) защищает от деления на ноль
        inv_gamma = 1.0 / max(0.01, midtones)
        table = clamp_to_bytes(np.array([((i / 255.0) ** inv_gamma) * 255 for i in np.arange(0, 256)]))
        rgb = cv2.LUT(np.ascontiguousarray(buffer.rgb), table)
        return buffer.with_rgb(rgb)

    def apply_noise(self, buffer: PixelBuffer, amount: float) -> PixelBuffer:
        # Одно значение на пиксель, одинаковое для R, G, B
        noise = self.rng.uniform(-amount / 2, amount / 2, size=(buffer.height, buffer.width, 1))
        return buffer.with_rgb(buffer.rgb.astype(np.float64) + noise)

    @staticmethod
    def apply_sharpen(buffer: PixelBuffer, amount: float) -> PixelBuffer:
        """Unsharp-ядро 3x3, смешанное с оригиналом в пропорции amount/10."""
        rgb = buffer.rgb.astype(np.float64)
        sharpened = cv2.filter2D(rgb, -1, SHARPEN_KERNEL, borderType=cv2.BORDER_REPLICATE)
        blend = amount / 10.0
        result = rgb * (1 - blend) + sharpened * blend

        # Края не фильтруются
        result[0, :] = rgb[0, :]
        result[-1, :] = rgb[-1, :]
        result[:, 0] = rgb[:, 0]
        result[:, -1] = rgb[:, -1]
        return buffer.with_rgb(result)

    @staticmethod
    def apply_glow(buffer: PixelBuffer, amount: float) -> PixelBuffer:
        """Box blur + смешивание. Среднее только по пикселям внутри кадра."""
        radius = max(1, int(math.floor(amount / 20.0 + 0.5)))
        ksize = (2 * radius + 1, 2 * radius + 1)

        rgb = buffer.rgb.astype(np.float64)
        sums = cv2.boxFilter(rgb, -1, ksize, normalize=False, borderType=cv2.BORDER_CONSTANT)
        counts = cv2.boxFilter(np.ones((buffer.height, buffer.width), dtype=np.float64), -1, ksize,
                               normalize=False, borderType=cv2.BORDER_CONSTANT)
        blurred = sums / np.maximum(counts, 1)[:, :, None]

        blend = min(1.0, amount / 100.0)
        return buffer.with_rgb(rgb * (1 - blend) + blurred * blend)

    @staticmethod
    def to_grayscale(buffer: PixelBuffer) -> PixelBuffer:
        gray = buffer.rgb.astype(np.float64) @ LUMA_WEIGHTS
        return buffer.with_rgb(np.repeat(gray[:, :, None], 3, axis=2))
