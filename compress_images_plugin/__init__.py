"""
Build plugin that replaces emitted images with compressed versions.

Modules:
- core: the plugin, per-asset dispatch and the completion gate
- assets: pattern selection, path rewriting and manifest sources
- compressor: adapter around the external compression engines
- hosts: adapters for the two host hook-registration styles
- config: plugin configuration, defaults and loaders
"""

from .assets import RawSource, rewrite_path, select_assets
from .compressor import CompressionRequest, CompressionResult, ImageCompressor
from .config import EngineParameters, PluginConfig, config_from_env, load_config
from .core import CompressImagesPlugin, TaskOutcome

__all__ = [
    "CompressImagesPlugin",
    "CompressionRequest",
    "CompressionResult",
    "EngineParameters",
    "ImageCompressor",
    "PluginConfig",
    "RawSource",
    "TaskOutcome",
    "config_from_env",
    "load_config",
    "rewrite_path",
    "select_assets",
]
