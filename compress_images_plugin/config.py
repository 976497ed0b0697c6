import json
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from dotenv import load_dotenv


FORMATS: Tuple[str, ...] = ("jpg", "png", "svg", "gif")

DEFAULT_DESTINATION = "."

ENV_PREFIX = "COMPRESS_IMAGES_"


@dataclass(frozen=True)
class EngineParameters:
    """
    Which external engine compresses a format, and the arguments passed to it.

    `command` is kept exactly as configured: either a list of arguments or a
    single string (svgo is traditionally configured with `"--multipass"`).
    """

    engine: str
    command: Union[str, Sequence[str]] = ()

    def arguments(self) -> List[str]:
        if isinstance(self.command, str):
            return shlex.split(self.command)
        return [str(arg) for arg in self.command]

    @classmethod
    def coerce(cls, value: Any) -> "EngineParameters":
        if isinstance(value, EngineParameters):
            return value
        if isinstance(value, Mapping):
            if "engine" not in value:
                raise ValueError(f"Engine parameters need an 'engine' key: {dict(value)!r}")
            return cls(engine=str(value["engine"]), command=value.get("command", ()))
        raise TypeError(f"Cannot use {value!r} as engine parameters.")


DEFAULT_COMPRESS_PARAMETERS: Mapping[str, EngineParameters] = MappingProxyType(
    {
        "jpg": EngineParameters(engine="mozjpeg", command=("-quality", "60")),
        "png": EngineParameters(engine="pngquant", command=("--quality=20-50",)),
        "svg": EngineParameters(engine="svgo", command="--multipass"),
        "gif": EngineParameters(engine="gifsicle", command=("--colors", "64", "--use-col=web")),
    }
)


def normalize_output(output: Optional[str]) -> str:
    """
    Empty output means "no override"; anything else becomes a `/`-prefixed segment.

    Whitespace only decides emptiness, the value itself is kept as given.
    Already-prefixed values pass through unchanged.
    """
    if output is None or not output.strip():
        return ""
    return output if output.startswith("/") else f"/{output}"


def merge_compress_parameters(
    overrides: Optional[Mapping[str, Any]],
) -> Tuple[Dict[str, EngineParameters], str]:
    """
    Merge user parameters over the defaults, one format at a time.

    Returns the per-format parameters and the destination root, which is read
    from the `destination` key of the same mapping.
    """
    merged: Dict[str, EngineParameters] = dict(DEFAULT_COMPRESS_PARAMETERS)
    destination = DEFAULT_DESTINATION

    for key, value in (overrides or {}).items():
        if key == "destination":
            destination = "" if value is None else str(value)
            continue
        if key not in FORMATS:
            raise ValueError(
                f"Unknown image format {key!r} in compress parameters (expected one of {', '.join(FORMATS)})."
            )
        merged[key] = EngineParameters.coerce(value)

    return merged, destination


@dataclass(frozen=True)
class PluginConfig:
    patterns: Tuple[str, ...] = ()
    output: str = ""
    compress_parameters: Mapping[str, EngineParameters] = field(
        default_factory=lambda: DEFAULT_COMPRESS_PARAMETERS
    )
    destination: str = DEFAULT_DESTINATION
    context: Path = field(default_factory=Path.cwd)

    def __post_init__(self) -> None:
        # Direct construction gets the same normalization as build().
        if isinstance(self.patterns, str):
            raise TypeError("patterns must be a sequence of glob strings, not a single string.")

        overrides = self.compress_parameters or {}
        merged, destination = merge_compress_parameters(overrides)
        if "destination" not in overrides:
            destination = "" if self.destination is None else str(self.destination)

        object.__setattr__(self, "patterns", tuple(self.patterns or ()))
        object.__setattr__(self, "output", normalize_output(self.output))
        object.__setattr__(self, "compress_parameters", MappingProxyType(merged))
        object.__setattr__(self, "destination", destination)
        object.__setattr__(self, "context", Path(self.context))

    @classmethod
    def build(
        cls,
        patterns: Optional[Iterable[str]] = None,
        output: Optional[str] = "",
        compress_parameters: Optional[Mapping[str, Any]] = None,
        context: Optional[Union[str, Path]] = None,
    ) -> "PluginConfig":
        return cls(
            patterns=patterns or (),
            output=output or "",
            compress_parameters=compress_parameters or {},
            context=Path(context) if context is not None else Path.cwd(),
        )

    def resolve(self, path: str) -> Path:
        """
        Turn a slash-separated artifact or destination path into a filesystem path.
        """
        candidate = Path(path)
        if candidate.is_absolute():
            return candidate
        return self.context / candidate


def load_config(path: Path) -> PluginConfig:
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)

    context = data.get("context")
    if context is not None and not Path(context).is_absolute():
        # Relative contexts are relative to the config file itself.
        context = path.parent / context

    return PluginConfig.build(
        patterns=data.get("patterns", []),
        output=data.get("output", ""),
        compress_parameters=data.get("compress_parameters") or {},
        context=context,
    )


def config_from_env(env_file: Optional[Path] = None) -> PluginConfig:
    """
    Build a configuration from COMPRESS_IMAGES_* environment variables.

    A local .env file is loaded first if present; variables already set in the
    environment win over the file.
    """
    load_dotenv(dotenv_path=env_file)

    patterns = [
        pattern.strip()
        for pattern in os.environ.get(f"{ENV_PREFIX}PATTERNS", "").split(",")
        if pattern.strip()
    ]

    compress_parameters: Dict[str, Any] = {}
    destination = os.environ.get(f"{ENV_PREFIX}DESTINATION")
    if destination is not None:
        compress_parameters["destination"] = destination

    for fmt in FORMATS:
        engine = os.environ.get(f"{ENV_PREFIX}{fmt.upper()}_ENGINE")
        command = os.environ.get(f"{ENV_PREFIX}{fmt.upper()}_COMMAND")
        if engine is None and command is None:
            continue
        default = DEFAULT_COMPRESS_PARAMETERS[fmt]
        compress_parameters[fmt] = EngineParameters(
            engine=engine or default.engine,
            command=shlex.split(command) if command is not None else default.command,
        )

    return PluginConfig.build(
        patterns=patterns,
        output=os.environ.get(f"{ENV_PREFIX}OUTPUT", ""),
        compress_parameters=compress_parameters,
        context=os.environ.get(f"{ENV_PREFIX}CONTEXT"),
    )
