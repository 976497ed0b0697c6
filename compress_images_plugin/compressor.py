"""
Adapter around the external image-compression toolchain.

Each image format is handled by a named engine. Command-line engines
(mozjpeg, pngquant, svgo, gifsicle) run as subprocesses; the `pillow` engine
re-encodes in process. The adapter never raises for a failing file: callers
get a `CompressionResult` with `completed=False` and the error attached.
"""

import asyncio
import glob
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import aiofiles.os
from PIL import Image

from .assets import format_for
from .config import EngineParameters


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompressionOptions:
    compress_force: bool = True
    statistic: bool = True
    # Recompress an existing output when its input has changed since.
    autoupdate: bool = True


@dataclass(frozen=True)
class CompressionRequest:
    input_path: Path
    output_dir: Path
    options: CompressionOptions = field(default_factory=CompressionOptions)
    # When set, `input_path` is a (recursive) glob rather than a single file.
    glob_option: bool = False
    jpg: Optional[EngineParameters] = None
    png: Optional[EngineParameters] = None
    svg: Optional[EngineParameters] = None
    gif: Optional[EngineParameters] = None

    def parameters_for(self, fmt: str) -> Optional[EngineParameters]:
        return getattr(self, fmt, None)


@dataclass(frozen=True)
class CompressionStatistic:
    input: Path
    path_out_new: Path
    algorithm: str
    size_in: int
    size_output: int

    @property
    def percent(self) -> float:
        if not self.size_in:
            return 0.0
        return round((self.size_in - self.size_output) / self.size_in * 100, 2)


@dataclass(frozen=True)
class CompressionResult:
    error: Optional[str] = None
    completed: bool = False
    statistic: Optional[CompressionStatistic] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.completed


class CompressionError(Exception):
    """Raised inside an engine; converted into a failed `CompressionResult`."""


# Builds the argv for a command-line engine from (binary, args, input, output).
CommandBuilder = Callable[[str, List[str], Path, Path], List[str]]

COMMAND_ENGINES: Dict[str, Tuple[str, CommandBuilder]] = {
    "mozjpeg": ("cjpeg", lambda exe, args, src, out: [exe, *args, "-outfile", str(out), str(src)]),
    "pngquant": (
        "pngquant",
        lambda exe, args, src, out: [exe, *args, "--force", "--output", str(out), str(src)],
    ),
    "svgo": ("svgo", lambda exe, args, src, out: [exe, *args, "-i", str(src), "-o", str(out)]),
    "gifsicle": ("gifsicle", lambda exe, args, src, out: [exe, *args, "-o", str(out), str(src)]),
}

PILLOW_FORMATS = {"jpg": "JPEG", "png": "PNG", "gif": "GIF"}


def build_command(engine: str, arguments: List[str], src: Path, out: Path) -> List[str]:
    """
    Resolve an engine's binary on PATH and build its command line.
    """
    if engine not in COMMAND_ENGINES:
        raise CompressionError(f"Unknown compression engine {engine!r}.")
    binary, builder = COMMAND_ENGINES[engine]
    exe = shutil.which(binary)
    if exe is None:
        raise CompressionError(f"Engine {engine!r} needs the {binary!r} executable on PATH.")
    return builder(exe, arguments, src, out)


def _pillow_save_options(arguments: List[str]) -> Dict[str, object]:
    options: Dict[str, object] = {}
    for arg in arguments:
        key, sep, raw = arg.lstrip("-").partition("=")
        if not sep:
            raise CompressionError(f"Pillow engine options look like key=value, got {arg!r}.")
        value: object = raw
        if raw.lower() in {"true", "false"}:
            value = raw.lower() == "true"
        elif raw.isdigit():
            value = int(raw)
        options[key.replace("-", "_")] = value
    return options


def _pillow_compress(fmt: str, arguments: List[str], src: Path, out: Path) -> None:
    if fmt not in PILLOW_FORMATS:
        raise CompressionError(f"The pillow engine cannot compress {fmt} files.")
    options = _pillow_save_options(arguments)
    colors = options.pop("colors", None)

    with Image.open(src) as img:
        img.load()
        if fmt == "jpg" and img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        if colors is not None:
            img = img.convert("RGB").quantize(colors=int(colors))
        img.save(out, format=PILLOW_FORMATS[fmt], **options)


class ImageCompressor:
    """
    Compresses single images (or globs of images) into an output directory.
    """

    async def compress(self, request: CompressionRequest) -> CompressionResult:
        if request.glob_option:
            return await self._compress_glob(request)
        try:
            statistic = await self._compress_file(request, Path(request.input_path))
        except (CompressionError, OSError, ValueError, Image.DecompressionBombError) as exc:
            logger.debug("Compression of %s failed: %s", request.input_path, exc)
            return CompressionResult(error=str(exc), completed=False)
        return CompressionResult(error=None, completed=True, statistic=statistic)

    async def _compress_glob(self, request: CompressionRequest) -> CompressionResult:
        matches = sorted(glob.glob(str(request.input_path), recursive=True))
        first_error: Optional[str] = None
        statistic: Optional[CompressionStatistic] = None
        for match in matches:
            try:
                statistic = await self._compress_file(request, Path(match))
            except (CompressionError, OSError, ValueError, Image.DecompressionBombError) as exc:
                logger.debug("Compression of %s failed: %s", match, exc)
                first_error = first_error or str(exc)
        if first_error is not None:
            return CompressionResult(error=first_error, completed=False, statistic=statistic)
        return CompressionResult(error=None, completed=True, statistic=statistic)

    async def _compress_file(
        self, request: CompressionRequest, src: Path
    ) -> Optional[CompressionStatistic]:
        fmt = format_for(src.name)
        if fmt is None:
            raise CompressionError(f"{src.name} is not a supported image format.")
        parameters = request.parameters_for(fmt)
        if parameters is None:
            raise CompressionError(f"No engine configured for {fmt} files.")
        if not await aiofiles.os.path.isfile(src):
            raise CompressionError(f"Input file {src} does not exist.")

        output_dir = Path(request.output_dir)
        await aiofiles.os.makedirs(output_dir, exist_ok=True)
        out = output_dir / src.name

        if await aiofiles.os.path.exists(out) and not await self._needs_update(
            request.options, src, out
        ):
            logger.debug("Skipping %s, %s is up to date", src, out)
            return None

        if os.path.abspath(out) == os.path.abspath(src):
            # Engines do not all support in-place writes; go through a sibling file.
            target = out.with_name(f".{out.name}.tmp")
        else:
            target = out

        size_in = (await aiofiles.os.stat(src)).st_size
        try:
            await self._run_engine(fmt, parameters, src, target)
            if target != out:
                await aiofiles.os.replace(target, out)
        except Exception:
            if target != out and await aiofiles.os.path.exists(target):
                await aiofiles.os.remove(target)
            raise

        if not request.options.statistic:
            return None
        return CompressionStatistic(
            input=src,
            path_out_new=out,
            algorithm=parameters.engine,
            size_in=size_in,
            size_output=(await aiofiles.os.stat(out)).st_size,
        )

    @staticmethod
    async def _needs_update(options: CompressionOptions, src: Path, out: Path) -> bool:
        if options.compress_force:
            return True
        if not options.autoupdate:
            return False
        src_stat = await aiofiles.os.stat(src)
        out_stat = await aiofiles.os.stat(out)
        return src_stat.st_mtime > out_stat.st_mtime

    async def _run_engine(
        self, fmt: str, parameters: EngineParameters, src: Path, out: Path
    ) -> None:
        arguments = parameters.arguments()
        if parameters.engine == "pillow":
            await asyncio.to_thread(_pillow_compress, fmt, arguments, src, out)
            return

        cmd = build_command(parameters.engine, arguments, src, out)
        logger.debug("Running %s", " ".join(cmd))
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await proc.communicate()
        if proc.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise CompressionError(
                f"{parameters.engine} exited with status {proc.returncode}: {message or 'no output'}"
            )
        if not out.exists():
            raise CompressionError(f"{parameters.engine} did not write {out}.")
