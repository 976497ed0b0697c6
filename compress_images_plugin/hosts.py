from typing import Any, Awaitable, Callable, Optional, Union

# (compilation, callback) -> awaitable; the callback takes an optional error.
EmitCallback = Callable[[Any, Callable[..., None]], Awaitable[None]]


class ModernHookHost:
    """
    Host exposing `compiler.hooks.emit.tap_async(name, fn)`.
    """

    def __init__(self, compiler: Any) -> None:
        self.compiler = compiler

    def on_emit(self, callback: EmitCallback, name: str) -> None:
        self.compiler.hooks.emit.tap_async(name, callback)


class LegacyHookHost:
    """
    Host that only knows direct registration: `compiler.plugin("emit", fn)`.
    """

    def __init__(self, compiler: Any) -> None:
        self.compiler = compiler

    def on_emit(self, callback: EmitCallback, name: Optional[str] = None) -> None:
        self.compiler.plugin("emit", callback)


def select_host(compiler: Any) -> Union[ModernHookHost, LegacyHookHost]:
    if getattr(compiler, "hooks", None) is not None:
        return ModernHookHost(compiler)
    return LegacyHookHost(compiler)
