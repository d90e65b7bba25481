"""
config.py
Централизованное хранилище настроек приложения.
Параметры дизеринга, предобработки и экспорта в SVG.
"""
from dataclasses import dataclass, fields, replace as dc_replace
from typing import Optional
import numpy as np


class InvalidConfiguration(ValueError):
    """Значение параметра вне допустимого диапазона или неизвестно."""


# Порядок совпадает с выпадающим списком в UI
ALGORITHMS = (
    "floyd-steinberg",
    "atkinson",
    "burkes",
    "sierra",
    "sierra-lite",
    "stucki",
    "bayer",
)

# Поле -> (минимум, максимум). None = без ограничения сверху.
RANGES = {
    "THRESHOLD": (0, 255),
    "INTENSITY": (0, None),
    "PALETTE_SIZE": (1, None),
    "PIXELATION_SCALE": (1, 50),
    "DETAIL_ENHANCEMENT": (0, 10),
    "BRIGHTNESS": (-100, 100),
    "MIDTONES": (0, 2),
    "NOISE": (0, 100),
    "GLOW": (0, 100),
    "EXPOSURE": (-100, 100),
}

INTEGER_FIELDS = ("PALETTE_SIZE", "PIXELATION_SCALE")


@dataclass(frozen=True)
class DitherConfig:
    # --- 1. ДИЗЕРИНГ ---
    ALGORITHM: str = "floyd-steinberg"
    # Точка округления при квантовании (255 = чистый floor).
    THRESHOLD: float = 128
    # Множитель ошибки диффузии. 0 = простое квантование.
    INTENSITY: float = 1.0
    # Число уровней серого. 2 = чистый ч/б.
    PALETTE_SIZE: int = 4
    # Змейка (только floyd-steinberg).
    SERPENTINE: bool = False

    # --- 2. PRE-PROCESSING ---
    PIXELATION_SCALE: int = 1
    DETAIL_ENHANCEMENT: float = 0
    BRIGHTNESS: float = 0
    # Гамма: < 1.0 темнее, > 1.0 светлее.
    MIDTONES: float = 1.0
    NOISE: float = 0
    GLOW: float = 0
    # В стопах * 100: 100 = x2.
    EXPOSURE: float = 0

    # Больше этого числа пикселей резкость и свечение ослабляются вдвое.
    LARGE_IMAGE_PIXELS: int = 2_000_000

    # --- 3. VECTORIZATION (SVG) ---
    LUMA_THRESHOLD: int = 128
    QUADTREE_MIN_SIZE: int = 8
    SVG_MAX_CHARS: int = 50_000
    SVG_SOFT_CHARS: int = 20_000
    MAX_COMPONENTS: int = 10_000
    DOWNSAMPLE_TARGET_CELLS: int = 10_000
    FILL_COLOR: str = "black"
    # Предупреждение о тяжелом SVG (грубая оценка w*h/1000 КБ).
    SVG_WARN_KB: int = 1000

    # Параметры экспорта
    RASTER_QUALITY: int = 92
    OUTPUT_SUFFIX: str = "_dithered"

    def validate(self) -> "DitherConfig":
        if self.ALGORITHM not in ALGORITHMS:
            raise InvalidConfiguration(
                f"Неизвестный алгоритм: {self.ALGORITHM!r}. Доступны: {', '.join(ALGORITHMS)}"
            )
        if not isinstance(self.SERPENTINE, (bool, np.bool_)):
            raise InvalidConfiguration("SERPENTINE должен быть bool")

        for name, (low, high) in RANGES.items():
            value = getattr(self, name)
            if isinstance(value, (bool, np.bool_)) or not isinstance(value, (int, float, np.integer, np.floating)):
                raise InvalidConfiguration(f"{name} должен быть числом, получено {value!r}")
            if not np.isfinite(value):
                raise InvalidConfiguration(f"{name} должен быть конечным числом, получено {value}")
            if name in INTEGER_FIELDS and int(value) != value:
                raise InvalidConfiguration(f"{name} должен быть целым, получено {value}")
            if value < low or (high is not None and value > high):
                limit = f"[{low}, {high}]" if high is not None else f">= {low}"
                raise InvalidConfiguration(f"{name}={value} вне диапазона {limit}")
        return self

    def replace(self, **changes) -> "DitherConfig":
        return dc_replace(self, **changes).validate()

    def as_options(self) -> dict:
        """Пользовательские параметры (без констант экспорта) для логов."""
        names = ("ALGORITHM", "SERPENTINE") + tuple(RANGES)
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name in names}

    @classmethod
    def randomized(cls, rng: np.random.Generator, algorithm: Optional[str] = None) -> "DitherConfig":
        """Кнопка "Randomize": алгоритм сохраняется, остальное случайно."""
        return cls(
            ALGORITHM=algorithm or cls.ALGORITHM,
            THRESHOLD=int(rng.integers(0, 256)),
            INTENSITY=round(float(rng.uniform(0, 2)), 2),
            PALETTE_SIZE=int(rng.integers(2, 9)),
            SERPENTINE=bool(rng.random() < 0.5),
            PIXELATION_SCALE=int(rng.integers(1, 11)),
            DETAIL_ENHANCEMENT=int(rng.integers(0, 11)),
            BRIGHTNESS=int(rng.integers(-100, 101)),
            MIDTONES=round(float(rng.uniform(0, 2)), 2),
            NOISE=int(rng.integers(0, 101)),
            GLOW=int(rng.integers(0, 101)),
            EXPOSURE=int(rng.integers(0, 101)),
        ).validate()
