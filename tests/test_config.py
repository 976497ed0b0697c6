import json
import os
from pathlib import Path

import pytest

from compress_images_plugin.config import (
    DEFAULT_COMPRESS_PARAMETERS,
    EngineParameters,
    PluginConfig,
    config_from_env,
    load_config,
    normalize_output,
)


def test_defaults():
    config = PluginConfig.build(patterns=["*.png"])
    assert config.patterns == ("*.png",)
    assert config.output == ""
    assert config.destination == "."
    assert config.compress_parameters["jpg"] == EngineParameters("mozjpeg", ("-quality", "60"))
    assert config.compress_parameters["png"].arguments() == ["--quality=20-50"]
    assert config.compress_parameters["svg"].arguments() == ["--multipass"]
    assert config.compress_parameters["gif"].arguments() == ["--colors", "64", "--use-col=web"]


@pytest.mark.parametrize(
    "output,expected",
    [("", ""), ("   ", ""), (None, ""), ("dist", "/dist"), ("/dist", "/dist"), (" dist ", "/ dist ")],
)
def test_normalize_output(output, expected):
    assert normalize_output(output) == expected


def test_user_parameters_merge_per_format():
    config = PluginConfig.build(
        compress_parameters={
            "jpg": {"engine": "pillow", "command": ["quality=80"]},
            "destination": "public",
        }
    )
    assert config.compress_parameters["jpg"] == EngineParameters("pillow", ["quality=80"])
    assert config.compress_parameters["png"] == DEFAULT_COMPRESS_PARAMETERS["png"]
    assert config.destination == "public"


def test_config_is_immutable():
    config = PluginConfig.build(patterns=["*.png"])
    with pytest.raises(Exception):
        config.output = "/other"
    with pytest.raises(TypeError):
        config.compress_parameters["jpg"] = EngineParameters("pillow")


def test_unknown_format_is_rejected():
    with pytest.raises(ValueError, match="webp"):
        PluginConfig.build(compress_parameters={"webp": {"engine": "cwebp"}})


def test_engine_parameters_need_engine():
    with pytest.raises(ValueError):
        EngineParameters.coerce({"command": ["-x"]})
    with pytest.raises(TypeError):
        EngineParameters.coerce("mozjpeg")


def test_single_pattern_string_is_rejected():
    with pytest.raises(TypeError):
        PluginConfig.build(patterns="*.png")


def test_resolve_relative_and_absolute(tmp_path: Path):
    config = PluginConfig.build(context=tmp_path)
    assert config.resolve("static/logo.png") == tmp_path / "static" / "logo.png"
    assert config.resolve("./dist/") == tmp_path / "dist"
    assert config.resolve("/abs/dir/") == Path("/abs/dir")


def test_load_config(tmp_path: Path):
    path = tmp_path / "compress.json"
    path.write_text(
        json.dumps(
            {
                "patterns": ["**/*.png"],
                "output": "dist",
                "context": "site",
                "compress_parameters": {"png": {"engine": "pillow", "command": ["optimize=true"]}},
            }
        ),
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.patterns == ("**/*.png",)
    assert config.output == "/dist"
    assert config.context == tmp_path / "site"
    assert config.compress_parameters["png"].engine == "pillow"


@pytest.fixture
def clean_environ(monkeypatch):
    environ = {k: v for k, v in os.environ.items() if not k.startswith("COMPRESS_IMAGES_")}
    monkeypatch.setattr(os, "environ", environ)
    return environ


def test_config_from_env(tmp_path: Path, clean_environ):
    clean_environ.update(
        {
            "COMPRESS_IMAGES_PATTERNS": "*.png, *.jpg ,",
            "COMPRESS_IMAGES_OUTPUT": "dist",
            "COMPRESS_IMAGES_DESTINATION": "public",
            "COMPRESS_IMAGES_JPG_COMMAND": "-quality 75",
            "COMPRESS_IMAGES_CONTEXT": str(tmp_path),
        }
    )

    config = config_from_env(env_file=tmp_path / "missing.env")

    assert config.patterns == ("*.png", "*.jpg")
    assert config.output == "/dist"
    assert config.destination == "public"
    assert config.context == tmp_path
    assert config.compress_parameters["jpg"] == EngineParameters("mozjpeg", ["-quality", "75"])
    assert config.compress_parameters["gif"] == DEFAULT_COMPRESS_PARAMETERS["gif"]


def test_config_from_env_file(tmp_path: Path, clean_environ):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "COMPRESS_IMAGES_PATTERNS=*.gif\nCOMPRESS_IMAGES_GIF_ENGINE=pillow\n",
        encoding="utf-8",
    )
    clean_environ["COMPRESS_IMAGES_PATTERNS"] = "*.svg"

    config = config_from_env(env_file=env_file)

    # Variables already in the environment win over the file.
    assert config.patterns == ("*.svg",)
    assert config.compress_parameters["gif"].engine == "pillow"
    assert config.compress_parameters["gif"].arguments() == ["--colors", "64", "--use-col=web"]


def test_direct_construction_is_normalized(tmp_path: Path):
    config = PluginConfig(
        patterns=["*.png"],
        output="dist",
        compress_parameters={"png": {"engine": "pillow", "command": ["optimize=true"]}},
        context=str(tmp_path),
    )

    assert config.patterns == ("*.png",)
    assert config.output == "/dist"
    assert config.destination == "."
    assert config.context == tmp_path
    assert config.compress_parameters["png"] == EngineParameters("pillow", ["optimize=true"])
    assert config.compress_parameters["jpg"] == DEFAULT_COMPRESS_PARAMETERS["jpg"]
    with pytest.raises(TypeError):
        config.compress_parameters["gif"] = EngineParameters("pillow")


def test_direct_construction_destination_from_parameters():
    config = PluginConfig(compress_parameters={"destination": "public"}, destination="ignored")
    assert config.destination == "public"
    assert PluginConfig(destination="build").destination == "build"


def test_direct_construction_rejects_bad_input():
    with pytest.raises(TypeError):
        PluginConfig(patterns="*.png")
    with pytest.raises(ValueError):
        PluginConfig(compress_parameters={"bmp": {"engine": "pillow"}})
