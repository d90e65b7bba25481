"""
vectorizer.py
Модуль векторизации: дизеренный растр -> SVG из прямоугольников.
Стратегии: Quadtree -> Components (bbox) -> Run-Length -> Downsampled.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

import cv2
import numpy as np
import svgwrite

from config import DitherConfig
from pixel_buffer import PixelBuffer

logger = logging.getLogger(__name__)

Rect = Tuple[int, int, int, int]

STRATEGIES = ("quadtree", "components", "run-length", "downsampled")


@dataclass
class QuadNode:
    x: int
    y: int
    width: int
    height: int
    is_leaf: bool
    # Имеет смысл только для листьев
    is_dark: bool = False
    children: List["QuadNode"] = field(default_factory=list)

    def leaves(self) -> Iterator["QuadNode"]:
        if self.is_leaf:
            yield self
            return
        for child in self.children:
            yield from child.leaves()


@dataclass
class VectorResult:
    svg: str
    strategy: str
    rects: List[Rect]

    @property
    def size_kb(self) -> float:
        return len(self.svg.encode("utf-8")) / 1024


class VectorConverter:
    def __init__(self, config: DitherConfig):
        self.cfg = config

    def dark_mask(self, buffer: PixelBuffer) -> np.ndarray:
        """True там, где яркость ниже порога (черные пиксели)."""
        return buffer.luminance() < self.cfg.LUMA_THRESHOLD

    # --- 1. QUADTREE ---

    def build_quadtree(self, mask: np.ndarray, x: int, y: int, width: int, height: int) -> QuadNode:
        region = mask[y:y + height, x:x + width]
        dark = bool(region.all())
        uniform = dark or not region.any()
        min_size = self.cfg.QUADTREE_MIN_SIZE

        if uniform or width <= min_size or height <= min_size:
            return QuadNode(x, y, width, height, is_leaf=True, is_dark=uniform and dark)

        # Остаток уходит в последнего потомка по каждой оси
        hw = width // 2
        hh = height // 2
        children = [
            self.build_quadtree(mask, x, y, hw, hh),
            self.build_quadtree(mask, x + hw, y, width - hw, hh),
            self.build_quadtree(mask, x, y + hh, hw, height - hh),
            self.build_quadtree(mask, x + hw, y + hh, width - hw, height - hh),
        ]
        return QuadNode(x, y, width, height, is_leaf=False, children=children)

    def quadtree_rects(self, mask: np.ndarray) -> List[Rect]:
        h, w = mask.shape
        tree = self.build_quadtree(mask, 0, 0, w, h)
        return [(n.x, n.y, n.width, n.height) for n in tree.leaves() if n.is_dark]

    # --- 2. CONNECTED COMPONENTS ---

    def component_rects(self, mask: np.ndarray) -> List[Rect]:
        """
        4-связные компоненты темных пикселей, по одному bbox на компоненту.
        Форма компоненты теряется (известное упрощение).
        """
        n_labels, _, stats, _ = cv2.connectedComponentsWithStats(
            mask.astype(np.uint8), connectivity=4
        )
        rects = []
        # Метка 0 - фон
        for i in range(1, n_labels):
            rects.append((
                int(stats[i, cv2.CC_STAT_LEFT]),
                int(stats[i, cv2.CC_STAT_TOP]),
                int(stats[i, cv2.CC_STAT_WIDTH]),
                int(stats[i, cv2.CC_STAT_HEIGHT]),
            ))
        rects.sort(key=lambda r: (r[1], r[0]))
        return rects

    # --- 3. RUN-LENGTH ---

    @staticmethod
    def row_runs(row: np.ndarray) -> List[Tuple[int, int]]:
        """Серии True в строке как (start, end), end не включается."""
        padded = np.concatenate(([False], row, [False])).astype(np.int8)
        edges = np.flatnonzero(np.diff(padded))
        return [(int(s), int(e)) for s, e in zip(edges[::2], edges[1::2])]

    @staticmethod
    def merge_runs(runs: List[Tuple[int, int]]) -> List[Tuple[int, int]]:
        """Склеивает соседние серии и серии с разрывом в 1 пиксель."""
        if len(runs) <= 1:
            return list(runs)
        merged = []
        start, end = runs[0]
        for s, e in runs[1:]:
            if s <= end + 1:
                end = max(end, e)
            else:
                merged.append((start, end))
                start, end = s, e
        merged.append((start, end))
        return merged

    def run_length_rects(self, mask: np.ndarray) -> List[Rect]:
        rects = []
        for y, row in enumerate(mask):
            for start, end in self.merge_runs(self.row_runs(row)):
                rects.append((start, y, end - start, 1))
        return rects

    # --- 4. AGGRESSIVE DOWNSAMPLING ---

    def downsampled_rects(self, buffer: PixelBuffer) -> List[Rect]:
        w, h = buffer.width, buffer.height
        scale = max(1, int(math.floor(math.sqrt(w * h / self.cfg.DOWNSAMPLE_TARGET_CELLS))))
        sw, sh = w // scale, h // scale
        if sw == 0 or sh == 0:
            return []

        # Усреднение блоками scale x scale (хвосты за пределами сетки отбрасываются)
        # Яркость и среднее округляются до байта, как в растровом буфере
        luma = np.rint(buffer.luminance()[:sh * scale, :sw * scale])
        cells = np.rint(luma.reshape(sh, scale, sw, scale).mean(axis=(1, 3)))

        ys, xs = np.nonzero(cells < self.cfg.LUMA_THRESHOLD)
        return [(int(x) * scale, int(y) * scale, scale, scale) for y, x in zip(ys, xs)]

    # --- SVG ---

    def render_svg(self, rects: List[Rect], width: int, height: int) -> str:
        dwg = svgwrite.Drawing(size=(width, height), profile='full', debug=False,
                               shape_rendering="crispEdges")
        for x, y, rw, rh in rects:
            dwg.add(dwg.rect(insert=(x, y), size=(rw, rh), fill=self.cfg.FILL_COLOR))
        return dwg.tostring()

    def encode(self, buffer: PixelBuffer, strategy: Optional[str] = None) -> VectorResult:
        """
        Выбор стратегии по размеру документа:
        quadtree > SVG_MAX_CHARS -> компоненты (или RLE, если компонент слишком много);
        quadtree > SVG_SOFT_CHARS -> даунсэмплинг; иначе quadtree.
        """
        w, h = buffer.width, buffer.height
        mask = self.dark_mask(buffer)

        if strategy is not None:
            return self._encode_with(strategy, buffer, mask)

        rects = self.quadtree_rects(mask)
        svg = self.render_svg(rects, w, h)
        result = VectorResult(svg, "quadtree", rects)

        if len(svg) > self.cfg.SVG_MAX_CHARS:
            rects = self.component_rects(mask)
            if len(rects) > self.cfg.MAX_COMPONENTS:
                logger.debug("Components: %d > %d, falling back to run-length",
                             len(rects), self.cfg.MAX_COMPONENTS)
                result = self._encode_with("run-length", buffer, mask)
            else:
                result = VectorResult(self.render_svg(rects, w, h), "components", rects)
        elif len(svg) > self.cfg.SVG_SOFT_CHARS:
            result = self._encode_with("downsampled", buffer, mask)

        logger.info("SVG generated: strategy=%s, rects=%d, %dKB",
                    result.strategy, len(result.rects), round(result.size_kb))
        return result

    def _encode_with(self, strategy: str, buffer: PixelBuffer, mask: np.ndarray) -> VectorResult:
        if strategy == "quadtree":
            rects = self.quadtree_rects(mask)
        elif strategy == "components":
            rects = self.component_rects(mask)
        elif strategy == "run-length":
            rects = self.run_length_rects(mask)
        elif strategy == "downsampled":
            rects = self.downsampled_rects(buffer)
        else:
            raise ValueError(f"Неизвестная стратегия: {strategy!r}. Доступны: {', '.join(STRATEGIES)}")
        return VectorResult(self.render_svg(rects, buffer.width, buffer.height), strategy, rects)

    def process_and_save(self, buffer: PixelBuffer, output_path: str) -> int:
        result = self.encode(buffer)
        with open(output_path, "w", encoding="utf-8") as fh:
            fh.write(result.svg)
        return len(result.rects)
