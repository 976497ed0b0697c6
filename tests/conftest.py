import asyncio
from pathlib import Path
from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest

from compress_images_plugin.assets import RawSource
from compress_images_plugin.compressor import CompressionRequest, CompressionResult


class FakeCompilation:
    def __init__(self, assets: Optional[Dict[str, object]] = None) -> None:
        self.assets = dict(assets or {})


class BrokenAssets(dict):
    def keys(self):
        raise RuntimeError("manifest is unavailable")


class FakeHook:
    def __init__(self) -> None:
        self.taps: List[tuple] = []

    def tap_async(self, name, fn) -> None:
        self.taps.append((name, fn))


class ModernCompiler:
    def __init__(self) -> None:
        self.hooks = SimpleNamespace(emit=FakeHook())


class LegacyCompiler:
    def __init__(self) -> None:
        self.plugins: List[tuple] = []

    def plugin(self, event, fn) -> None:
        self.plugins.append((event, fn))


class CallbackRecorder:
    def __init__(self) -> None:
        self.calls: List[tuple] = []

    def __call__(self, *args) -> None:
        self.calls.append(args)


class FakeCompressor:
    """
    Records requests and, on success, overwrites the input file the way the
    real engines update the build's working tree.
    """

    def __init__(
        self,
        result: Optional[CompressionResult] = None,
        payload: bytes = b"compressed",
        delay: float = 0.0,
    ) -> None:
        self.result = result or CompressionResult(error=None, completed=True)
        self.payload = payload
        self.delay = delay
        self.requests: List[CompressionRequest] = []
        self.active = 0
        self.max_active = 0

    async def compress(self, request: CompressionRequest) -> CompressionResult:
        self.requests.append(request)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.result.completed:
                Path(request.input_path).write_bytes(self.payload)
            return self.result
        finally:
            self.active -= 1


@pytest.fixture
def project(tmp_path: Path) -> Path:
    (tmp_path / "static").mkdir()
    (tmp_path / "static" / "logo.png").write_bytes(b"original png")
    (tmp_path / "static" / "readme.md").write_bytes(b"# readme")
    return tmp_path


@pytest.fixture
def compilation() -> FakeCompilation:
    return FakeCompilation(
        {
            "static/logo.png": RawSource(b"original png"),
            "static/readme.md": RawSource(b"# readme"),
        }
    )


@pytest.fixture
def callback() -> CallbackRecorder:
    return CallbackRecorder()


class RaisingCompressor(FakeCompressor):
    """Blows up for the named files instead of reporting a failure."""

    def __init__(self, failing_names, **kwargs) -> None:
        super().__init__(**kwargs)
        self.failing_names = set(failing_names)

    async def compress(self, request: CompressionRequest) -> CompressionResult:
        if Path(request.input_path).name in self.failing_names:
            self.requests.append(request)
            raise RuntimeError("engine crashed")
        return await super().compress(request)
