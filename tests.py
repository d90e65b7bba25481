"""
tests.py
Модуль автоматического тестирования (Unit Tests).
Запуск: python -m unittest tests
"""
import tempfile
import unittest
import xml.etree.ElementTree as ET
from pathlib import Path

import cv2
import numpy as np

from config import ALGORITHMS, DitherConfig, InvalidConfiguration
from dither import DIFFUSION_KERNELS, DitherEngine, bayer_thresholds, quantize
from image_processor import ImageProcessor
from pipeline import DitherPipeline, PreviewSession
from pixel_buffer import InvalidInput, PixelBuffer, clamp_to_bytes
from vectorizer import VectorConverter

SVG_NS = "{http://www.w3.org/2000/svg}"


def gray_buffer(values) -> PixelBuffer:
    return PixelBuffer.from_array(np.asarray(values, dtype=np.uint8))


def block_checkerboard(size: int, block: int = 8) -> PixelBuffer:
    """Шахматка из блоков block x block: темные блоки не касаются по сторонам."""
    yy, xx = np.mgrid[0:size, 0:size]
    dark = ((yy // block) + (xx // block)) % 2 == 0
    return gray_buffer(np.where(dark, 0, 255))


def parse_svg(svg: str):
    root = ET.fromstring(svg)
    rects = [(int(r.get("x")), int(r.get("y")), int(r.get("width")), int(r.get("height")))
             for r in root.iter(SVG_NS + "rect")]
    return root, rects


# Классические матрицы: текущий пиксель в строке 0, столбце 2
KERNEL_MATRICES = {
    "floyd-steinberg": ([[0, 0, 0, 7, 0], [0, 3, 5, 1, 0], [0, 0, 0, 0, 0]], 16),
    "atkinson": ([[0, 0, 0, 1, 1], [0, 1, 1, 1, 0], [0, 0, 1, 0, 0]], 8),
    "burkes": ([[0, 0, 0, 8, 4], [2, 4, 8, 4, 2], [0, 0, 0, 0, 0]], 32),
    "sierra": ([[0, 0, 0, 5, 3], [2, 4, 5, 4, 2], [0, 2, 3, 2, 0]], 32),
    "sierra-lite": ([[0, 0, 0, 2, 0], [0, 1, 1, 0, 0], [0, 0, 0, 0, 0]], 4),
    "stucki": ([[0, 0, 0, 8, 4], [2, 4, 8, 4, 2], [1, 2, 4, 2, 1]], 42),
}


def reference_diffusion(plane, matrix, divisor, cfg) -> np.ndarray:
    """Прямолинейная диффузия слева направо с байтовым буфером."""
    values = plane.astype(np.float64)
    h, w = values.shape
    for y in range(h):
        for x in range(w):
            old = float(values[y, x])
            new = quantize(old, cfg.PALETTE_SIZE, cfg.THRESHOLD)
            values[y, x] = new
            err = (old - new) * cfg.INTENSITY
            for my in range(3):
                for mx in range(5):
                    weight = matrix[my][mx]
                    nx, ny = x + mx - 2, y + my
                    if weight and 0 <= nx < w and ny < h:
                        v = round(float(values[ny, nx]) + err * (weight / divisor))
                        values[ny, nx] = min(255, max(0, v))
    return clamp_to_bytes(values)


class TestConfig(unittest.TestCase):

    def test_defaults_are_valid(self):
        """Настройки по умолчанию совпадают с UI и проходят проверку."""
        cfg = DitherConfig().validate()
        self.assertEqual(cfg.ALGORITHM, "floyd-steinberg")
        self.assertEqual(cfg.PALETTE_SIZE, 4)
        self.assertEqual(cfg.THRESHOLD, 128)
        self.assertFalse(cfg.SERPENTINE)
        self.assertEqual(len(ALGORITHMS), 7)

    def test_unknown_algorithm_rejected(self):
        with self.assertRaises(InvalidConfiguration):
            DitherConfig(ALGORITHM="jarvis").validate()

    def test_out_of_range_values_rejected(self):
        bad = [
            {"THRESHOLD": 256},
            {"THRESHOLD": -1},
            {"INTENSITY": -0.1},
            {"PALETTE_SIZE": 0},
            {"PALETTE_SIZE": 2.5},
            {"PIXELATION_SCALE": 51},
            {"PIXELATION_SCALE": 0},
            {"DETAIL_ENHANCEMENT": 11},
            {"BRIGHTNESS": 101},
            {"MIDTONES": 2.5},
            {"NOISE": 101},
            {"GLOW": -1},
            {"EXPOSURE": -101},
            {"NOISE": True},
            {"THRESHOLD": "128"},
            {"SERPENTINE": 1},
            {"PALETTE_SIZE": float("inf")},
            {"INTENSITY": float("inf")},
            {"GLOW": float("-inf")},
            {"MIDTONES": float("nan")},
        ]
        for changes in bad:
            with self.subTest(changes=changes):
                with self.assertRaises(InvalidConfiguration):
                    DitherConfig().replace(**changes)

    def test_replace_keeps_original(self):
        base = DitherConfig()
        changed = base.replace(PALETTE_SIZE=2)
        self.assertEqual(base.PALETTE_SIZE, 4)
        self.assertEqual(changed.PALETTE_SIZE, 2)

    def test_randomized_is_valid_and_reproducible(self):
        a = DitherConfig.randomized(np.random.default_rng(7), algorithm="atkinson")
        b = DitherConfig.randomized(np.random.default_rng(7), algorithm="atkinson")
        self.assertEqual(a, b)
        self.assertEqual(a.ALGORITHM, "atkinson")
        self.assertTrue(2 <= a.PALETTE_SIZE <= 8)
        self.assertTrue(1 <= a.PIXELATION_SCALE <= 10)
        self.assertTrue(0 <= a.EXPOSURE <= 100)


class TestPixelBuffer(unittest.TestCase):

    def test_length_mismatch(self):
        with self.assertRaises(InvalidInput):
            PixelBuffer.from_bytes(2, 2, bytes(15))

    def test_non_positive_dimensions(self):
        with self.assertRaises(InvalidInput):
            PixelBuffer.from_bytes(0, 2, b"")
        with self.assertRaises(InvalidInput):
            PixelBuffer(2, -1, np.zeros((1, 2, 4), dtype=np.uint8))

    def test_shape_mismatch(self):
        with self.assertRaises(InvalidInput):
            PixelBuffer(3, 2, np.zeros((2, 2, 4), dtype=np.uint8))

    def test_bytes_layout(self):
        raw = bytes(range(24))
        buf = PixelBuffer.from_bytes(3, 2, raw)
        self.assertEqual(buf.to_bytes(), raw)
        # Второй пиксель первой строки: RGBA = 4..7
        self.assertEqual(list(buf.data[0, 1]), [4, 5, 6, 7])

    def test_from_gray_array(self):
        buf = gray_buffer([[10, 20], [30, 40]])
        self.assertEqual((buf.width, buf.height), (2, 2))
        self.assertTrue(np.all(buf.alpha == 255))
        self.assertEqual(list(buf.data[1, 0]), [30, 30, 30, 255])

    def test_with_rgb_clamps(self):
        buf = PixelBuffer.blank(2, 1, 100)
        out = buf.with_rgb(np.array([[[-20, 300, 127.6], [0, 0, 0]]]))
        self.assertEqual(list(out.data[0, 0]), [0, 255, 128, 255])
        # Исходный буфер не изменился
        self.assertEqual(list(buf.data[0, 0]), [100, 100, 100, 255])

    def test_blank_clamps_value(self):
        self.assertTrue(np.all(PixelBuffer.blank(2, 2, 300).rgb == 255))
        self.assertTrue(np.all(PixelBuffer.blank(1, 1, -5).rgb == 0))


class TestImageProcessor(unittest.TestCase):

    def setUp(self):
        self.config = DitherConfig()
        self.processor = ImageProcessor(self.config, rng=np.random.default_rng(42))

        # Пятно 100 на сером фоне 50
        spike = np.full((5, 5), 50, dtype=np.uint8)
        spike[2, 2] = 100
        self.spike = gray_buffer(spike)

    def test_grayscale_weights(self):
        data = np.array([[[100, 150, 200, 77]]], dtype=np.uint8)
        out = self.processor.to_grayscale(PixelBuffer(1, 1, data))
        # 0.299*100 + 0.587*150 + 0.114*200 = 140.75
        self.assertEqual(list(out.data[0, 0]), [141, 141, 141, 77])

    def test_exposure_doubles_and_clamps(self):
        out = self.processor.apply_exposure(gray_buffer([[60, 200]]), 100)
        self.assertEqual(list(out.rgb[0, :, 0]), [120, 255])

    def test_brightness_clamps(self):
        out = self.processor.apply_brightness(gray_buffer([[50, 250]]), -100)
        self.assertEqual(list(out.rgb[0, :, 0]), [0, 150])

    def test_midtones_zero_is_guarded(self):
        out = self.processor.apply_midtones(gray_buffer([[0, 128, 255]]), 0)
        self.assertEqual(list(out.rgb[0, :, 0]), [0, 0, 255])

    def test_midtones_brightens(self):
        out = self.processor.apply_midtones(gray_buffer([[64]]), 2)
        # 255 * (64/255) ** 0.5 = 127.75
        self.assertEqual(out.rgb[0, 0, 0], 128)

    def test_identity_config_only_converts_to_gray(self):
        rng = np.random.default_rng(1)
        img = PixelBuffer.from_array(rng.integers(0, 256, (6, 9, 3), dtype=np.uint8))
        out = self.processor.preprocess(img)
        expected = self.processor.to_grayscale(img)
        np.testing.assert_array_equal(out.data, expected.data)

    def test_preprocess_does_not_mutate_input(self):
        img = gray_buffer(np.arange(64, dtype=np.uint8).reshape(8, 8))
        before = img.data.copy()
        cfg = self.config.replace(EXPOSURE=50, BRIGHTNESS=20, GLOW=40, DETAIL_ENHANCEMENT=3)
        ImageProcessor(cfg).preprocess(img)
        np.testing.assert_array_equal(img.data, before)

    def test_noise_is_seeded_and_bounded(self):
        img = PixelBuffer.blank(10, 10, 128)
        a = ImageProcessor(self.config, rng=np.random.default_rng(3)).apply_noise(img, 20)
        b = ImageProcessor(self.config, rng=np.random.default_rng(3)).apply_noise(img, 20)
        np.testing.assert_array_equal(a.data, b.data)
        self.assertTrue(a.rgb.min() >= 118 and a.rgb.max() <= 138)
        # Один и тот же сдвиг для R, G, B
        np.testing.assert_array_equal(a.rgb[:, :, 0], a.rgb[:, :, 2])
        self.assertFalse(np.all(a.rgb == 128))

    def test_pixelation_makes_blocks(self):
        """16x16, масштаб 4: каждый блок 4x4 однороден после предобработки."""
        rng = np.random.default_rng(5)
        img = PixelBuffer.from_array(rng.integers(0, 256, (16, 16, 3), dtype=np.uint8))
        cfg = self.config.replace(PIXELATION_SCALE=4)
        out = ImageProcessor(cfg).preprocess(img)
        gray = out.rgb[:, :, 0]
        for by in range(0, 16, 4):
            for bx in range(0, 16, 4):
                block = gray[by:by + 4, bx:bx + 4]
                self.assertEqual(len(np.unique(block)), 1, f"Блок ({bx},{by}) неоднороден")
        self.assertGreater(len(np.unique(gray)), 1)

    def test_sharpen_full_strength(self):
        out = self.processor.apply_sharpen(self.spike, 10)
        gray = out.rgb[:, :, 0]
        # 5*100 - 4*50 = 300 -> 255; сосед: 5*50 - (100+3*50) = 0
        self.assertEqual(gray[2, 2], 255)
        self.assertEqual(gray[1, 2], 0)
        # Края без изменений
        self.assertTrue(np.all(gray[0, :] == 50))
        self.assertTrue(np.all(gray[:, -1] == 50))

    def test_sharpen_uniform_is_identity(self):
        img = PixelBuffer.blank(6, 6, 90)
        out = self.processor.apply_sharpen(img, 7)
        np.testing.assert_array_equal(out.data, img.data)

    def test_large_image_halves_detail(self):
        """Для больших картинок резкость применяется вполсилы."""
        cfg = self.config.replace(DETAIL_ENHANCEMENT=10, LARGE_IMAGE_PIXELS=10)
        out = ImageProcessor(cfg).preprocess(self.spike)
        expected = self.processor.to_grayscale(self.processor.apply_sharpen(self.spike, 5))
        np.testing.assert_array_equal(out.data, expected.data)
        full = self.processor.to_grayscale(self.processor.apply_sharpen(self.spike, 10))
        self.assertFalse(np.array_equal(out.data, full.data))

    def test_large_image_halves_glow(self):
        """Свечение для больших картинок тоже вполсилы."""
        cfg = self.config.replace(GLOW=100, LARGE_IMAGE_PIXELS=10)
        out = ImageProcessor(cfg).preprocess(self.spike)
        expected = self.processor.to_grayscale(self.processor.apply_glow(self.spike, 50))
        np.testing.assert_array_equal(out.data, expected.data)
        full = self.processor.to_grayscale(self.processor.apply_glow(self.spike, 100))
        self.assertFalse(np.array_equal(out.data, full.data))

    def test_glow_spreads_light(self):
        img = np.zeros((7, 7), dtype=np.uint8)
        img[3, 3] = 255
        buf = gray_buffer(img)
        buf.data[:, :, 3] = 200
        out = self.processor.apply_glow(buf, 100)
        gray = out.rgb[:, :, 0]
        self.assertLess(gray[3, 3], 255)
        self.assertGreater(gray[0, 0], 0)
        self.assertTrue(np.all(out.alpha == 200))

    def test_glow_uniform_is_identity(self):
        img = PixelBuffer.blank(5, 4, 80)
        out = self.processor.apply_glow(img, 60)
        np.testing.assert_array_equal(out.data, img.data)

    def test_save_and_load_png(self):
        rng = np.random.default_rng(9)
        data = rng.integers(0, 256, (5, 7, 4), dtype=np.uint8)
        buf = PixelBuffer(7, 5, data)
        with tempfile.TemporaryDirectory() as tmp:
            path = str(Path(tmp) / "img.png")
            self.processor.save_image(buf, path)
            loaded = self.processor.load_image(path)
        np.testing.assert_array_equal(loaded.data, buf.data)

    def test_load_bgr_image_as_rgba(self):
        bgr = np.zeros((2, 2, 3), dtype=np.uint8)
        bgr[:, :, 0] = 255  # синий канал
        with tempfile.TemporaryDirectory() as tmp:
            path = str(Path(tmp) / "blue.png")
            cv2.imwrite(path, bgr)
            loaded = self.processor.load_image(path)
        self.assertEqual(list(loaded.data[0, 0]), [0, 0, 255, 255])

    def test_save_jpeg_and_unknown_format(self):
        buf = PixelBuffer.blank(4, 4, 0)
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "img.jpg"
            self.processor.save_image(buf, str(path), quality=80)
            self.assertTrue(path.exists())
            with self.assertRaises(ValueError):
                self.processor.save_image(buf, str(Path(tmp) / "img.gif"))

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            self.processor.load_image("/nonexistent/image.png")


class TestDitherEngine(unittest.TestCase):

    def setUp(self):
        self.config = DitherConfig(PALETTE_SIZE=2)
        yy, xx = np.mgrid[0:24, 0:32]
        self.gradient = gray_buffer((xx * 8 + yy) % 256)

    def test_quantize(self):
        self.assertEqual(quantize(200, 1, 128), 0)
        self.assertEqual(quantize(127, 2, 128), 0)
        self.assertEqual(quantize(128, 2, 128), 255)
        # threshold=255: чистый floor(value/step)*step
        self.assertEqual(quantize(254, 2, 255), 0)
        self.assertEqual(quantize(255, 2, 255), 255)
        self.assertEqual(quantize(100, 4, 255), 85)
        self.assertEqual(quantize(300, 4, 0), 255)

    def test_uniform_light_stays_white(self):
        """2x2, яркость 200, палитра 2 -> все пиксели белые."""
        buf = gray_buffer(np.full((2, 2), 200))
        out = DitherEngine(self.config).dither(buf)
        self.assertTrue(np.all(out.rgb == 255))

    def test_binary_output_for_palette_two(self):
        for name in DIFFUSION_KERNELS:
            with self.subTest(algorithm=name):
                out = DitherEngine(self.config.replace(ALGORITHM=name)).dither(self.gradient)
                self.assertTrue(np.all(np.isin(out.rgb, [0, 255])))
                self.assertGreater(np.count_nonzero(out.rgb == 0), 0)
                self.assertGreater(np.count_nonzero(out.rgb == 255), 0)

    def test_output_shape_for_all_algorithms(self):
        rng = np.random.default_rng(11)
        img = PixelBuffer.from_array(rng.integers(0, 256, (9, 13, 3), dtype=np.uint8))
        for name in ALGORITHMS:
            with self.subTest(algorithm=name):
                cfg = DitherConfig(ALGORITHM=name, PALETTE_SIZE=5, INTENSITY=1.7, SERPENTINE=True)
                out = DitherEngine(cfg).dither(img)
                self.assertEqual(len(out.to_bytes()), 13 * 9 * 4)
                self.assertEqual(out.data.dtype, np.uint8)

    def test_palette_levels(self):
        cfg = DitherConfig(PALETTE_SIZE=4)
        out = DitherEngine(cfg).dither(self.gradient)
        self.assertTrue(np.all(np.isin(out.rgb, [0, 85, 170, 255])))

    def test_palette_one_is_black(self):
        out = DitherEngine(DitherConfig(PALETTE_SIZE=1)).dither(self.gradient)
        self.assertTrue(np.all(out.rgb == 0))

    def test_zero_intensity_is_plain_quantization(self):
        buf = gray_buffer(np.full((4, 4), 100))
        out = DitherEngine(self.config.replace(INTENSITY=0)).dither(buf)
        self.assertTrue(np.all(out.rgb == 0))

    def test_alpha_preserved(self):
        buf = self.gradient.copy()
        buf.data[:, :, 3] = 33
        for name in ("floyd-steinberg", "bayer"):
            out = DitherEngine(self.config.replace(ALGORITHM=name)).dither(buf)
            self.assertTrue(np.all(out.alpha == 33))

    def test_serpentine_changes_only_odd_rows(self):
        """Первая строка точная (без ошибки), вторая сканируется справа налево."""
        img = np.array([[0, 255] * 4, [100] * 8])
        buf = gray_buffer(img)
        plain = DitherEngine(self.config).dither(buf).rgb[:, :, 0]
        snake = DitherEngine(self.config.replace(SERPENTINE=True)).dither(buf).rgb[:, :, 0]

        np.testing.assert_array_equal(plain[0], snake[0])
        self.assertEqual(list(plain[1]), [0, 255, 0, 0, 255, 0, 0, 255])
        self.assertEqual(list(snake[1]), [255, 0, 0, 255, 0, 0, 255, 0])

    def test_serpentine_ignored_by_other_kernels(self):
        cfg = self.config.replace(ALGORITHM="atkinson")
        a = DitherEngine(cfg).dither(self.gradient)
        b = DitherEngine(cfg.replace(SERPENTINE=True)).dither(self.gradient)
        np.testing.assert_array_equal(a.data, b.data)

    def test_kernel_footprints(self):
        """Импульс в (2, 0) с большой интенсивностью засвечивает ровно клетки ядра."""
        plane = np.zeros((3, 5))
        plane[0, 2] = 254
        buf = gray_buffer(plane)
        for name, (matrix, _) in KERNEL_MATRICES.items():
            with self.subTest(algorithm=name):
                cfg = DitherConfig(ALGORITHM=name, PALETTE_SIZE=2, THRESHOLD=255, INTENSITY=64)
                out = DitherEngine(cfg).dither(buf).rgb[:, :, 0]
                expected = np.where(np.array(matrix) > 0, 255, 0)
                np.testing.assert_array_equal(out, expected)

    def test_kernel_weights(self):
        """Каждое ядро совпадает с построчной реализацией по классическим матрицам."""
        for name, (matrix, divisor) in KERNEL_MATRICES.items():
            with self.subTest(algorithm=name):
                cfg = DitherConfig(ALGORITHM=name, PALETTE_SIZE=3, THRESHOLD=128, INTENSITY=0.9)
                out = DitherEngine(cfg).dither(self.gradient).rgb[:, :, 0]
                expected = reference_diffusion(self.gradient.rgb[:, :, 0], matrix, divisor, cfg)
                np.testing.assert_array_equal(out, expected)

    def test_bayer_thresholds(self):
        cfg = DitherConfig(ALGORITHM="bayer")
        # Матрица[0][0] = 0 -> порог ~1.99
        out = DitherEngine(cfg).dither(gray_buffer([[2, 193, 194]]))
        self.assertEqual(list(out.rgb[0, :, 0]), [255, 0, 255])
        out = DitherEngine(cfg).dither(gray_buffer([[1]]))
        self.assertEqual(out.rgb[0, 0, 0], 0)
        self.assertEqual(bayer_thresholds(17, 9).shape, (9, 17))

    def test_bayer_is_pure(self):
        cfg = DitherConfig(ALGORITHM="bayer", PALETTE_SIZE=6, INTENSITY=0.3)
        a = DitherEngine(cfg).dither(self.gradient)
        b = DitherEngine(cfg.replace(SERPENTINE=True, PALETTE_SIZE=2, INTENSITY=2)).dither(self.gradient)
        np.testing.assert_array_equal(a.data, b.data)
        self.assertTrue(np.all(np.isin(a.rgb, [0, 255])))

    def test_unknown_algorithm(self):
        # Конструктор не валидирует - это делает движок
        with self.assertRaises(InvalidConfiguration):
            DitherEngine(DitherConfig(ALGORITHM="random")).dither(self.gradient)


class TestVectorConverter(unittest.TestCase):

    def setUp(self):
        self.config = DitherConfig()
        self.vectorizer = VectorConverter(self.config)

    def assert_partition(self, node):
        if node.is_leaf:
            self.assertEqual(node.children, [])
            return
        self.assertEqual(len(node.children), 4)
        self.assertEqual(sum(c.width * c.height for c in node.children), node.width * node.height)
        for c in node.children:
            self.assertTrue(node.x <= c.x and c.x + c.width <= node.x + node.width)
            self.assertTrue(node.y <= c.y and c.y + c.height <= node.y + node.height)
            self.assert_partition(c)

    def test_quadtree_leaves_partition_canvas(self):
        rng = np.random.default_rng(2)
        mask = rng.random((23, 37)) < 0.3
        mask[:12, :18] = True
        tree = self.vectorizer.build_quadtree(mask, 0, 0, 37, 23)
        self.assert_partition(tree)

        coverage = np.zeros(mask.shape, dtype=int)
        for leaf in tree.leaves():
            coverage[leaf.y:leaf.y + leaf.height, leaf.x:leaf.x + leaf.width] += 1
            if leaf.is_dark:
                self.assertTrue(mask[leaf.y:leaf.y + leaf.height, leaf.x:leaf.x + leaf.width].all())
        self.assertTrue(np.all(coverage == 1))

    def test_light_image_has_no_rects(self):
        result = self.vectorizer.encode(PixelBuffer.blank(40, 30, 255))
        root, rects = parse_svg(result.svg)
        self.assertEqual(result.strategy, "quadtree")
        self.assertEqual(rects, [])
        self.assertEqual((root.get("width"), root.get("height")), ("40", "30"))
        self.assertEqual(root.get("shape-rendering"), "crispEdges")

    def test_small_dark_image_single_rect(self):
        result = self.vectorizer.encode(PixelBuffer.blank(6, 5, 0))
        _, rects = parse_svg(result.svg)
        self.assertEqual(rects, [(0, 0, 6, 5)])

    def test_non_uniform_min_leaf_is_light(self):
        img = np.full((8, 8), 255)
        img[3, 3] = 0
        self.assertEqual(self.vectorizer.quadtree_rects(img < 128), [])

    def test_block_checkerboard_quadtree(self):
        buf = block_checkerboard(32)
        rects = self.vectorizer.quadtree_rects(self.vectorizer.dark_mask(buf))
        self.assertEqual(len(rects), 8)
        self.assertTrue(all(r[2:] == (8, 8) for r in rects))

    def test_run_length_full_dark(self):
        """Полностью черное: ровно height прямоугольников во всю ширину."""
        buf = PixelBuffer.blank(20, 7, 0)
        result = self.vectorizer.encode(buf, strategy="run-length")
        _, rects = parse_svg(result.svg)
        self.assertEqual(rects, [(0, y, 20, 1) for y in range(7)])

    def test_merge_runs(self):
        self.assertEqual(VectorConverter.merge_runs([(0, 2), (3, 5), (7, 8)]), [(0, 5), (7, 8)])
        self.assertEqual(VectorConverter.merge_runs([(1, 4)]), [(1, 4)])
        self.assertEqual(VectorConverter.row_runs(np.array([True, True, False, True])), [(0, 2), (3, 4)])

    def test_component_bounding_boxes(self):
        mask = np.zeros((10, 10), dtype=bool)
        # L-образная фигура
        mask[1:5, 1] = True
        mask[4, 1:4] = True
        # Диагональный сосед - отдельная компонента (4-связность)
        mask[5, 4] = True
        mask[8, 7:9] = True
        rects = self.vectorizer.component_rects(mask)
        self.assertEqual(rects, [(1, 1, 3, 4), (4, 5, 1, 1), (7, 8, 2, 1)])

    def test_downsampled_covers_blocks(self):
        img = np.full((200, 200), 255)
        img[:, :100] = 0
        rects = self.vectorizer.downsampled_rects(gray_buffer(img))
        # scale = floor(sqrt(40000/10000)) = 2
        self.assertEqual(len(rects), 50 * 100)
        self.assertTrue(all(r[2:] == (2, 2) and r[0] < 100 for r in rects))


    def test_downsampled_rounds_cell_average(self):
        """Среднее 127.5 округляется до 128 - клетка светлая."""
        cfg = self.config.replace(DOWNSAMPLE_TARGET_CELLS=1)
        converter = VectorConverter(cfg)
        self.assertEqual(converter.downsampled_rects(gray_buffer([[0, 255], [255, 0]])), [])
        self.assertEqual(converter.downsampled_rects(gray_buffer([[0, 255], [0, 0]])), [(0, 0, 2, 2)])

    def test_strategy_components(self):
        cfg = self.config.replace(SVG_MAX_CHARS=100)
        result = VectorConverter(cfg).encode(block_checkerboard(64))
        self.assertEqual(result.strategy, "components")
        self.assertEqual(len(result.rects), 32)

    def test_strategy_run_length_fallback(self):
        cfg = self.config.replace(SVG_MAX_CHARS=100, MAX_COMPONENTS=10)
        result = VectorConverter(cfg).encode(block_checkerboard(64))
        self.assertEqual(result.strategy, "run-length")
        # 64 строки, в каждой 4 темных серии по 8 пикселей
        self.assertEqual(len(result.rects), 64 * 4)

    def test_strategy_downsampled(self):
        cfg = self.config.replace(SVG_SOFT_CHARS=100, DOWNSAMPLE_TARGET_CELLS=1024)
        result = VectorConverter(cfg).encode(block_checkerboard(64))
        root, rects = parse_svg(result.svg)
        self.assertEqual(result.strategy, "downsampled")
        self.assertEqual(len(rects), 512)
        self.assertEqual(root.get("width"), "64")

    def test_every_strategy_declares_canvas(self):
        buf = block_checkerboard(24)
        for strategy in ("quadtree", "components", "run-length", "downsampled"):
            with self.subTest(strategy=strategy):
                root, _ = parse_svg(self.vectorizer.encode(buf, strategy=strategy).svg)
                self.assertEqual((root.get("width"), root.get("height")), ("24", "24"))
        with self.assertRaises(ValueError):
            self.vectorizer.encode(buf, strategy="trace")

    def test_process_and_save(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "out.svg"
            count = self.vectorizer.process_and_save(block_checkerboard(32), str(path))
            _, rects = parse_svg(path.read_text(encoding="utf-8"))
        self.assertEqual(count, 8)
        self.assertEqual(len(rects), 8)


class TestPipeline(unittest.TestCase):

    def setUp(self):
        rng = np.random.default_rng(4)
        self.source = PixelBuffer.from_array(rng.integers(0, 256, (12, 16, 3), dtype=np.uint8))

    def test_run_produces_binary_buffer(self):
        cfg = DitherConfig(PALETTE_SIZE=2, BRIGHTNESS=10, GLOW=30)
        out = DitherPipeline(cfg).run(self.source)
        self.assertEqual((out.width, out.height), (16, 12))
        self.assertTrue(np.all(np.isin(out.rgb, [0, 255])))
        # Серый: каналы совпадают
        np.testing.assert_array_equal(out.rgb[:, :, 0], out.rgb[:, :, 1])

    def test_invalid_config_rejected_before_processing(self):
        with self.assertRaises(InvalidConfiguration):
            DitherPipeline(DitherConfig(PIXELATION_SCALE=0))

    def test_noise_reproducible_with_seed(self):
        cfg = DitherConfig(NOISE=60)
        a = DitherPipeline(cfg, rng=np.random.default_rng(8)).run(self.source)
        b = DitherPipeline(cfg, rng=np.random.default_rng(8)).run(self.source)
        np.testing.assert_array_equal(a.data, b.data)

    def test_vectorize(self):
        out = DitherPipeline(DitherConfig(PALETTE_SIZE=2)).run(self.source)
        result = DitherPipeline(DitherConfig()).vectorize(out)
        root, _ = parse_svg(result.svg)
        self.assertEqual(root.get("width"), "16")

    def test_preview_last_request_wins(self):
        published = []
        configs = [DitherConfig(ALGORITHM=name, PALETTE_SIZE=2) for name in ("atkinson", "burkes", "bayer")]
        with PreviewSession(self.source, on_result=published.append) as session:
            futures = [session.submit(cfg) for cfg in configs]
            for f in futures:
                f.result(timeout=30)
        expected = DitherPipeline(configs[-1]).run(self.source)
        self.assertIsNotNone(futures[-1].result())
        np.testing.assert_array_equal(session.result.data, expected.data)
        np.testing.assert_array_equal(published[-1].data, expected.data)

    def test_preview_discards_stale_result(self):
        with PreviewSession(self.source) as session:
            session.submit(DitherConfig()).result(timeout=30)
            session.submit(DitherConfig(ALGORITHM="bayer")).result(timeout=30)
            current = session.result
            # Запрос поколения 1 устарел: результат выбрасывается
            self.assertIsNone(session._compute(1, DitherConfig(ALGORITHM="stucki")))
            self.assertIs(session.result, current)

    def test_preview_rejects_invalid_config(self):
        with PreviewSession(self.source) as session:
            with self.assertRaises(InvalidConfiguration):
                session.submit(DitherConfig(ALGORITHM="nope"))
            self.assertEqual(session.generation, 0)


class TestCli(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        img = np.zeros((20, 30, 3), dtype=np.uint8)
        cv2.rectangle(img, (5, 5), (20, 15), (255, 255, 255), -1)
        cv2.imwrite(str(self.root / "sample.png"), img)

    def tearDown(self):
        self.tmp.cleanup()

    def test_png_output(self):
        from cli import main
        out = self.root / "out"
        code = main([str(self.root), "--out", str(out), "--palette-size", "2", "--seed", "1"])
        self.assertEqual(code, 0)
        self.assertTrue((out / "sample_dithered.png").exists())

    def test_svg_output(self):
        from cli import main
        out = self.root / "svg"
        code = main([str(self.root / "sample.png"), "--out", str(out), "--format", "svg",
                     "--algorithm", "bayer"])
        self.assertEqual(code, 0)
        root, _ = parse_svg((out / "sample_dithered.svg").read_text(encoding="utf-8"))
        self.assertEqual(root.get("width"), "30")

    def test_invalid_option_exit_code(self):
        from cli import main
        self.assertEqual(main([str(self.root), "--palette-size", "0"]), 2)

    def test_randomize_keeps_algorithm(self):
        from cli import ConsoleApp
        app = ConsoleApp([str(self.root), "--randomize", "--seed", "3", "--algorithm", "sierra"])
        self.assertEqual(app.config.ALGORITHM, "sierra")

    def test_serpentine_flag_both_ways(self):
        from cli import ConsoleApp
        self.assertTrue(ConsoleApp([str(self.root), "--serpentine"]).config.SERPENTINE)
        for seed in range(5):
            app = ConsoleApp([str(self.root), "--randomize", "--seed", str(seed), "--no-serpentine"])
            self.assertFalse(app.config.SERPENTINE)


if __name__ == '__main__':
    unittest.main()
