"""
pixel_buffer.py
Общий растровый буфер RGBA, которым обмениваются все стадии конвейера.
"""
from dataclasses import dataclass
import numpy as np


class InvalidInput(ValueError):
    """Буфер не соответствует заявленным размерам."""


# Веса яркости (ITU-R BT.601)
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114])


def clamp_to_bytes(values: np.ndarray) -> np.ndarray:
    """Округление + обрезка в [0, 255], как у Uint8ClampedArray."""
    return np.clip(np.rint(values), 0, 255).astype(np.uint8)


@dataclass
class PixelBuffer:
    width: int
    height: int
    # (height, width, 4), uint8, RGBA
    data: np.ndarray

    def __post_init__(self):
        if not isinstance(self.width, (int, np.integer)) or not isinstance(self.height, (int, np.integer)):
            raise InvalidInput("Размеры должны быть целыми числами")
        if self.width <= 0 or self.height <= 0:
            raise InvalidInput(f"Некорректные размеры: {self.width}x{self.height}")
        if not isinstance(self.data, np.ndarray) or self.data.dtype != np.uint8:
            raise InvalidInput("Данные должны быть массивом uint8")
        if self.data.shape != (self.height, self.width, 4):
            raise InvalidInput(
                f"Форма буфера {self.data.shape} не совпадает с {self.width}x{self.height}x4"
            )

    @classmethod
    def from_bytes(cls, width: int, height: int, raw) -> "PixelBuffer":
        raw = bytes(raw)
        if width <= 0 or height <= 0:
            raise InvalidInput(f"Некорректные размеры: {width}x{height}")
        if len(raw) != width * height * 4:
            raise InvalidInput(
                f"Длина буфера {len(raw)} != {width}*{height}*4 = {width * height * 4}"
            )
        data = np.frombuffer(raw, dtype=np.uint8).reshape(height, width, 4).copy()
        return cls(width, height, data)

    @classmethod
    def from_array(cls, array: np.ndarray) -> "PixelBuffer":
        """Принимает HxW (серый), HxWx3 (RGB) или HxWx4 (RGBA)."""
        array = np.asarray(array)
        if array.ndim == 2:
            array = np.repeat(array[:, :, None], 3, axis=2)
        if array.ndim != 3 or array.shape[2] not in (3, 4):
            raise InvalidInput(f"Неподдерживаемая форма массива: {array.shape}")
        if array.dtype != np.uint8:
            array = clamp_to_bytes(array)
        if array.shape[2] == 3:
            alpha = np.full(array.shape[:2] + (1,), 255, dtype=np.uint8)
            array = np.concatenate([array, alpha], axis=2)
        h, w = array.shape[:2]
        return cls(w, h, np.ascontiguousarray(array))

    @classmethod
    def blank(cls, width: int, height: int, value: int = 255) -> "PixelBuffer":
        if width <= 0 or height <= 0:
            raise InvalidInput(f"Некорректные размеры: {width}x{height}")
        data = np.full((height, width, 4), 255, dtype=np.uint8)
        data[:, :, :3] = clamp_to_bytes(np.array(value))
        return cls(width, height, data)

    @property
    def rgb(self) -> np.ndarray:
        return self.data[:, :, :3]

    @property
    def alpha(self) -> np.ndarray:
        return self.data[:, :, 3]

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    def luminance(self) -> np.ndarray:
        return self.rgb.astype(np.float64) @ LUMA_WEIGHTS

    def with_rgb(self, rgb: np.ndarray) -> "PixelBuffer":
        """Новый буфер с заменой RGB (альфа сохраняется)."""
        data = self.data.copy()
        data[:, :, :3] = clamp_to_bytes(rgb)
        return PixelBuffer(self.width, self.height, data)

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(self.width, self.height, self.data.copy())

    def to_bytes(self) -> bytes:
        return self.data.tobytes()
