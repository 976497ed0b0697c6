import asyncio
import logging
import shutil
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Union

import aiofiles
import aiofiles.os

from .assets import RawSource, RewrittenPath, is_compressible, rewrite_path, select_assets
from .compressor import CompressionOptions, CompressionRequest, ImageCompressor
from .config import PluginConfig
from .hosts import select_host


logger = logging.getLogger(__name__)


class TaskOutcome(Enum):
    COPIED = "copied"
    COMPRESSED = "compressed"
    FAILED = "failed"


class CompressImagesPlugin:
    """
    Build plugin that swaps emitted images for compressed versions:
    - select manifest keys matching the configured glob patterns
    - copy non-image files verbatim to the destination tree
    - hand image files to the external compressor
    - read each result back and re-register it under its new key
    - signal the host once every selected asset has settled
    """

    def __init__(
        self,
        patterns: Optional[Iterable[str]] = None,
        output: Optional[str] = "",
        compress_parameters: Optional[Mapping[str, Any]] = None,
        *,
        compressor: Optional[ImageCompressor] = None,
        context: Optional[Union[str, Path]] = None,
        max_concurrency: Optional[int] = None,
        config: Optional[PluginConfig] = None,
    ) -> None:
        self.config = config or PluginConfig.build(
            patterns=patterns,
            output=output,
            compress_parameters=compress_parameters,
            context=context,
        )
        self.compressor = compressor or ImageCompressor()
        if max_concurrency is not None and max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1.")
        self.max_concurrency = max_concurrency

    @classmethod
    def from_config(
        cls,
        config: PluginConfig,
        compressor: Optional[ImageCompressor] = None,
        max_concurrency: Optional[int] = None,
    ) -> "CompressImagesPlugin":
        return cls(compressor=compressor, max_concurrency=max_concurrency, config=config)

    def apply(self, compiler: Any) -> None:
        select_host(compiler).on_emit(self.on_emit, type(self).__name__)

    async def on_emit(self, compilation: Any, callback: Callable[..., None]) -> None:
        """
        Emit hook: process every selected asset, then call `callback` exactly once.
        """
        try:
            outcomes = await self.process_assets(compilation)
        except Exception as err:
            logger.error("Image compression aborted the build: %s", err)
            callback(err)
            return

        counts = {outcome: 0 for outcome in TaskOutcome}
        for outcome in outcomes.values():
            counts[outcome] += 1
        logger.info(
            "Processed %d asset(s): %d compressed, %d copied, %d failed",
            len(outcomes),
            counts[TaskOutcome.COMPRESSED],
            counts[TaskOutcome.COPIED],
            counts[TaskOutcome.FAILED],
        )
        callback()

    async def process_assets(self, compilation: Any) -> Dict[str, TaskOutcome]:
        selected = select_assets(list(compilation.assets.keys()), self.config.patterns)
        logger.debug("Selected %d of %d asset(s)", len(selected), len(compilation.assets))

        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None

        async def run(path: str) -> TaskOutcome:
            if semaphore is None:
                return await self.process_one_file(path, compilation)
            async with semaphore:
                return await self.process_one_file(path, compilation)

        tasks = [asyncio.ensure_future(run(path)) for path in selected]
        outcomes = await asyncio.gather(*tasks)
        return dict(zip(selected, outcomes))

    async def process_one_file(self, path: str, compilation: Any) -> TaskOutcome:
        """
        Process one asset. Never raises: failures come back as `TaskOutcome.FAILED`.
        """
        rewritten = rewrite_path(path, self.config.output, self.config.destination)

        if not is_compressible(rewritten.filename):
            return await self._copy_unmodified(path, rewritten, compilation)
        return await self._compress(path, rewritten, compilation)

    async def _copy_unmodified(
        self, path: str, rewritten: RewrittenPath, compilation: Any
    ) -> TaskOutcome:
        destination_dir = self.config.resolve(rewritten.destination_dir)
        try:
            await aiofiles.os.makedirs(destination_dir, exist_ok=True)
            await asyncio.to_thread(
                shutil.copyfile,
                self.config.resolve(path),
                destination_dir / rewritten.filename,
            )
            data = await self._read_back(rewritten)
        except OSError as exc:
            logger.warning("Could not copy %s to %s: %s", path, destination_dir, exc)
            return TaskOutcome.FAILED

        self._replace_asset(compilation, path, rewritten.new_key, data)
        logger.debug("Copied %s unmodified as %s", path, rewritten.new_key)
        return TaskOutcome.COPIED

    async def _compress(
        self, path: str, rewritten: RewrittenPath, compilation: Any
    ) -> TaskOutcome:
        parameters = self.config.compress_parameters
        request = CompressionRequest(
            input_path=self.config.resolve(path),
            output_dir=self.config.resolve(rewritten.destination_dir),
            options=CompressionOptions(compress_force=True, statistic=True, autoupdate=True),
            glob_option=False,
            jpg=parameters.get("jpg"),
            png=parameters.get("png"),
            svg=parameters.get("svg"),
            gif=parameters.get("gif"),
        )
        try:
            result = await self.compressor.compress(request)
        except Exception as exc:
            logger.warning("Compressor raised while processing %s: %r", path, exc)
            return TaskOutcome.FAILED

        if not result.completed:
            logger.warning("Compression of %s did not complete: %s", path, result.error or "no error reported")
            return TaskOutcome.FAILED

        try:
            data = await self._read_back(rewritten)
        except OSError as exc:
            logger.warning("Could not read back %s: %s", rewritten.source_path, exc)
            return TaskOutcome.FAILED

        self._replace_asset(compilation, path, rewritten.new_key, data)
        if result.statistic is not None:
            logger.debug(
                "Compressed %s with %s: %d -> %d bytes (%.2f%%)",
                path,
                result.statistic.algorithm,
                result.statistic.size_in,
                result.statistic.size_output,
                result.statistic.percent,
            )
        return TaskOutcome.COMPRESSED

    async def _read_back(self, rewritten: RewrittenPath) -> bytes:
        async with aiofiles.open(self.config.resolve(rewritten.source_path), "rb") as f:
            return await f.read()

    @staticmethod
    def _replace_asset(compilation: Any, old_key: str, new_key: str, data: bytes) -> None:
        compilation.assets.pop(old_key, None)
        compilation.assets[new_key] = RawSource(data)
