"""
cli.py
Обработка аргументов командной строки и UI.
"""
import sys
import time
import logging
import argparse
from pathlib import Path

import numpy as np
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, BarColumn, TextColumn
from rich.table import Table
from rich.panel import Panel
from rich import box

from config import ALGORITHMS, DitherConfig, InvalidConfiguration
from pipeline import DitherPipeline

console = Console()

EXTENSIONS = ["*.jpg", "*.jpeg", "*.png", "*.bmp", "*.webp", "*.tif", "*.tiff"]
FORMATS = ("png", "jpeg", "webp", "svg")

# Флаг CLI -> (поле конфига, тип)
OPTION_FLAGS = {
    "--algorithm": ("ALGORITHM", str),
    "--threshold": ("THRESHOLD", float),
    "--intensity": ("INTENSITY", float),
    "--palette-size": ("PALETTE_SIZE", int),
    "--pixelation": ("PIXELATION_SCALE", int),
    "--detail": ("DETAIL_ENHANCEMENT", float),
    "--brightness": ("BRIGHTNESS", float),
    "--midtones": ("MIDTONES", float),
    "--noise": ("NOISE", float),
    "--glow": ("GLOW", float),
    "--exposure": ("EXPOSURE", float),
}


class ConsoleApp:
    def __init__(self, argv=None):
        self.args = self.parse_args(argv)
        self.rng = np.random.default_rng(self.args.seed)
        self.config = self.build_config(self.args)

    def parse_args(self, argv=None):
        parser = argparse.ArgumentParser(description="Dither Vectorizer")
        parser.add_argument("input", type=str, help="Картинка или папка с картинками")
        parser.add_argument("--out", type=str, default="output", help="Папка для сохранения")
        parser.add_argument("--format", choices=FORMATS, default="png", help="Формат результата")
        parser.add_argument("--quality", type=int, default=None, help="Качество JPEG/WEBP (1-100)")
        parser.add_argument("--seed", type=int, default=None, help="Seed для шума и --randomize")
        parser.add_argument("--randomize", action="store_true", help="Случайные настройки (алгоритм сохраняется)")
        parser.add_argument("--serpentine", action=argparse.BooleanOptionalAction, default=None,
                            help="Сканирование змейкой (--no-serpentine выключает)")
        parser.add_argument("-v", "--verbose", action="store_true", help="Подробный лог")
        for flag, (name, kind) in OPTION_FLAGS.items():
            kwargs = {"type": kind, "default": None, "help": f"{name}"}
            if name == "ALGORITHM":
                kwargs["choices"] = ALGORITHMS
            parser.add_argument(flag, **kwargs)
        return parser.parse_args(argv)

    def build_config(self, args) -> DitherConfig:
        if args.randomize:
            base = DitherConfig.randomized(self.rng, algorithm=args.algorithm)
        else:
            base = DitherConfig()

        changes = {}
        for flag, (name, _) in OPTION_FLAGS.items():
            value = getattr(args, flag.lstrip("-").replace("-", "_"))
            if value is not None:
                changes[name] = value
        if args.serpentine is not None:
            changes["SERPENTINE"] = args.serpentine
        return base.replace(**changes)

    def collect_files(self, input_path: Path):
        if input_path.is_file():
            return [input_path]

        files = []
        for ext in EXTENSIONS:
            files.extend(input_path.glob(ext.lower()))
            files.extend(input_path.glob(ext.upper()))
        # Удаляем дубликаты
        return sorted(set(files))

    def run(self) -> int:
        args = self.args
        input_path = Path(args.input)
        output_path = Path(args.out)
        output_path.mkdir(parents=True, exist_ok=True)

        files = self.collect_files(input_path)
        if not files:
            console.print("[bold red]Ошибка:[/bold red] Файлы не найдены.")
            return 1

        pipeline = DitherPipeline(self.config, rng=self.rng)
        ext = "jpg" if args.format == "jpeg" else args.format

        console.print(Panel.fit(
            f"Файлов: [bold cyan]{len(files)}[/bold cyan]\n"
            f"Алгоритм: [bold green]{self.config.ALGORITHM}[/bold green], "
            f"палитра: {self.config.PALETTE_SIZE}, формат: {args.format}",
            title="Dither Vectorizer", border_style="blue"
        ))

        results = []
        failed = 0

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            console=console,
        ) as progress:
            task = progress.add_task("[cyan]Обработка...", total=len(files))

            for file in files:
                start_time = time.time()
                status = "OK"
                detail = "-"

                try:
                    # 1. Загрузка
                    source = pipeline.img_proc.load_image(str(file))

                    # 2. Предобработка + дизеринг
                    dithered = pipeline.run(source)

                    # 3. Сохранение
                    out_file = output_path / (file.stem + self.config.OUTPUT_SUFFIX + "." + ext)
                    if args.format == "svg":
                        self.warn_large_svg(file.name, dithered.width, dithered.height)
                        vector = pipeline.vectorize(dithered)
                        out_file.write_text(vector.svg, encoding="utf-8")
                        detail = f"{len(vector.rects)} ({vector.strategy}, {round(vector.size_kb)}KB)"
                    else:
                        pipeline.img_proc.save_image(dithered, str(out_file), quality=args.quality)
                        detail = f"{dithered.width}x{dithered.height}"

                except Exception as e:
                    failed += 1
                    status = f"ERROR: {e}"
                    console.print(f"\n[red]Сбой на {file.name}: {e}[/red]")

                elapsed = time.time() - start_time
                results.append((file.name, f"{elapsed:.2f}s", detail, status))
                progress.advance(task)

        self.print_summary(results)
        return 1 if failed else 0

    def warn_large_svg(self, name: str, width: int, height: int):
        estimated_kb = (width * height) // 1000
        if estimated_kb > self.config.SVG_WARN_KB:
            console.print(f"[yellow]{name}: большое изображение (~{estimated_kb}KB), "
                          f"SVG может быть тяжелым[/yellow]")

    def print_summary(self, data):
        table = Table(title="Результаты", box=box.ROUNDED)
        table.add_column("Файл", style="cyan")
        table.add_column("Время", justify="right")
        table.add_column("Результат", justify="right")
        table.add_column("Статус", justify="center")

        for row in data:
            status_style = "green" if row[3] == "OK" else "red"
            short_status = row[3] if len(row[3]) < 20 else "ERROR"
            table.add_row(row[0], row[1], row[2], f"[{status_style}]{short_status}[/{status_style}]")

        console.print(table)


def setup_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    setup_logging("-v" in argv or "--verbose" in argv)
    try:
        app = ConsoleApp(argv)
    except InvalidConfiguration as e:
        console.print(f"[bold red]Ошибка конфигурации:[/bold red] {e}")
        return 2
    return app.run()


if __name__ == "__main__":
    sys.exit(main())
