"""
pipeline.py
Сборка конвейера: PixelBuffer -> ImageProcessor -> DitherEngine -> (VectorConverter).
PreviewSession: пересчет при смене настроек, побеждает последний запрос.
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

import numpy as np

from config import DitherConfig
from dither import DitherEngine
from image_processor import ImageProcessor
from pixel_buffer import PixelBuffer
from vectorizer import VectorConverter, VectorResult

logger = logging.getLogger(__name__)


class DitherPipeline:
    def __init__(self, config: DitherConfig, rng: Optional[np.random.Generator] = None):
        # Конфиг проверяется до любой обработки
        self.config = config.validate()
        self.img_proc = ImageProcessor(self.config, rng=rng)
        self.engine = DitherEngine(self.config)
        self.vectorizer = VectorConverter(self.config)

    def run(self, buffer: PixelBuffer) -> PixelBuffer:
        prepared = self.img_proc.preprocess(buffer)
        return self.engine.dither(prepared)

    def vectorize(self, dithered: PixelBuffer, strategy: Optional[str] = None) -> VectorResult:
        return self.vectorizer.encode(dithered, strategy=strategy)


class PreviewSession:
    """
    Живой предпросмотр. Каждый submit() получает номер поколения;
    результат публикуется, только если за это время не пришел новый запрос.
    """

    def __init__(self, source: PixelBuffer, rng: Optional[np.random.Generator] = None,
                 on_result: Optional[Callable[[PixelBuffer], None]] = None):
        self.source = source
        self.rng = rng
        self.on_result = on_result
        self.result: Optional[PixelBuffer] = None
        self._generation = 0
        self._lock = threading.Lock()
        # Один воркер: буфер никогда не обрабатывается конкурентно
        self._executor = ThreadPoolExecutor(max_workers=1)

    @property
    def generation(self) -> int:
        return self._generation

    def submit(self, config: DitherConfig) -> Future:
        # Ошибка конфигурации - сразу вызывающему, без постановки в очередь
        config.validate()
        with self._lock:
            self._generation += 1
            ticket = self._generation
        return self._executor.submit(self._compute, ticket, config)

    def _compute(self, ticket: int, config: DitherConfig) -> Optional[PixelBuffer]:
        if ticket != self._generation:
            logger.debug("Skipping superseded preview #%d", ticket)
            return None

        result = DitherPipeline(config, rng=self.rng).run(self.source)

        with self._lock:
            if ticket != self._generation:
                logger.debug("Discarding stale preview #%d", ticket)
                return None
            self.result = result
        if self.on_result is not None:
            self.on_result(result)
        return result

    def close(self):
        self._executor.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
