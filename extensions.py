from __future__ import annotations

import hashlib
import importlib
import importlib.util
import os
import sys
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from lexer import BlueError
from objects import BuiltinFunction
from parser import Parser, Program


EXTENSION_API_VERSION = 1

# Modules shipped in the `ext` package, importable by bare name.
STDLIB_MODULES = ("math", "crypto", "time", "pubsub", "image")


class BlueExtensionError(BlueError):
    pass


@dataclass(frozen=True)
class ExtensionMetadata:
    name: str
    version: str = "0.0.0"
    requires_api: int = EXTENSION_API_VERSION


@dataclass(frozen=True)
class StepContext:
    step_index: int
    rule: str
    location: Any  # SourceLocation | None
    extra: Optional[Dict[str, Any]]


@dataclass
class HookRegistry:
    # event -> list[(priority, handler, ext_name)]
    _events: Dict[str, List[Tuple[int, Callable[..., None], str]]] = field(default_factory=dict)
    # list[(every_n, handler, ext_name, name)]
    _step_rules: List[Tuple[int, Callable[[Any, StepContext], None], str, str]] = field(default_factory=list)

    def on_event(self, event: str, handler: Callable[..., None], *, priority: int, ext_name: str) -> None:
        self._events.setdefault(event, []).append((priority, handler, ext_name))
        self._events[event].sort(key=lambda t: t[0], reverse=True)

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        for _priority, handler, _ext in self._events.get(event, []):
            handler(*args, **kwargs)

    def add_step_rule(self, *, name: str, every_n: int, handler: Callable[[Any, StepContext], None], ext_name: str) -> None:
        if every_n <= 0:
            raise BlueExtensionError("every_n_steps must be >= 1")
        self._step_rules.append((every_n, handler, ext_name, name))

    def after_step(self, interpreter: Any, ctx: StepContext) -> None:
        for every_n, handler, _ext, _name in self._step_rules:
            if ctx.step_index % every_n == 0:
                handler(interpreter, ctx)


@dataclass
class HostModule:
    """An importable module: embedded Blue source plus its `_`-prefixed host table."""

    name: str
    source: str
    builtins: List[BuiltinFunction] = field(default_factory=list)


@dataclass
class RuntimeServices:
    metadata: List[ExtensionMetadata] = field(default_factory=list)
    hook_registry: HookRegistry = field(default_factory=HookRegistry)
    # global builtins contributed by extensions, added to every interpreter
    builtins: List[BuiltinFunction] = field(default_factory=list)
    # importable modules contributed by extensions, shadowing the shipped ones
    modules: Dict[str, HostModule] = field(default_factory=dict)


class ExtensionAPI:
    def __init__(self, *, services: RuntimeServices, ext_name: str) -> None:
        self._services = services
        self._ext_name = ext_name
        self.builtins: List[BuiltinFunction] = []

    # ---- metadata ----
    def metadata(self, *, name: str, version: str = "0.0.0", requires_api: int = EXTENSION_API_VERSION) -> None:
        if requires_api > EXTENSION_API_VERSION:
            raise BlueExtensionError(f"Extension '{name}' requires API {requires_api}, host supports {EXTENSION_API_VERSION}")
        self._services.metadata.append(ExtensionMetadata(name=name, version=version, requires_api=requires_api))

    # ---- builtins ----
    def register_builtin(
        self,
        name: str,
        min_args: int,
        max_args: Optional[int],
        impl: Callable[..., Any],
        *,
        doc: str = "",
    ) -> None:
        if not name:
            raise BlueExtensionError("Builtin name must be non-empty")
        if any(b.name == name for b in self.builtins):
            raise BlueExtensionError(f"Builtin '{name}' registered twice by extension '{self._ext_name}'")
        self.builtins.append(
            BuiltinFunction(
                name=name,
                min_args=int(min_args),
                max_args=None if max_args is None else int(max_args),
                impl=impl,
                doc=doc or None,
            )
        )

    def builtin(self, name: str, min_args: int, max_args: Optional[int] = None, *, doc: str = ""):
        def deco(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.register_builtin(name, min_args, max_args, fn, doc=doc)
            return fn

        return deco

    # ---- hooks ----
    def on_event(self, event: str, handler: Optional[Callable[..., None]] = None, *, priority: int = 0):
        if handler is None:
            def deco(fn: Callable[..., None]) -> Callable[..., None]:
                self._services.hook_registry.on_event(event, fn, priority=priority, ext_name=self._ext_name)
                return fn
            return deco
        self._services.hook_registry.on_event(event, handler, priority=priority, ext_name=self._ext_name)
        return handler

    def every_n_steps(self, every_n: int, handler: Optional[Callable[[Any, StepContext], None]] = None, *, name: str = ""):
        if handler is None:
            def deco(fn: Callable[[Any, StepContext], None]) -> Callable[[Any, StepContext], None]:
                self._services.hook_registry.add_step_rule(name=name or fn.__name__, every_n=every_n, handler=fn, ext_name=self._ext_name)
                return fn
            return deco
        self._services.hook_registry.add_step_rule(name=name or handler.__name__, every_n=every_n, handler=handler, ext_name=self._ext_name)
        return handler


def _unique_module_name(path: str) -> str:
    base = os.path.basename(path)
    digest = hashlib.sha256(os.path.abspath(path).encode("utf-8")).hexdigest()[:12]
    safe = "".join(ch if ch.isalnum() else "_" for ch in base)
    return f"blue_ext_{safe}_{digest}"


def load_extension_module(path: str) -> Any:
    if not os.path.exists(path):
        raise BlueExtensionError(f"Extension not found: {path}")
    mod_name = _unique_module_name(path)
    spec = importlib.util.spec_from_file_location(mod_name, path)
    if spec is None or spec.loader is None:
        raise BlueExtensionError(f"Failed to load extension module: {path}")
    module = importlib.util.module_from_spec(spec)

    # Let extensions import siblings by temporarily prepending their directory.
    ext_dir = os.path.dirname(os.path.abspath(path))
    sys.path.insert(0, ext_dir)
    try:
        spec.loader.exec_module(module)  # type: ignore[union-attr]
    finally:
        if sys.path and sys.path[0] == ext_dir:
            sys.path.pop(0)
    return module


def read_bxt(pointer_file: str) -> List[str]:
    if not os.path.exists(pointer_file):
        raise BlueExtensionError(f".bxt file not found: {pointer_file}")
    base_dir = os.path.dirname(os.path.abspath(pointer_file))
    out: List[str] = []
    with open(pointer_file, "r", encoding="utf-8") as handle:
        for raw in handle.read().splitlines():
            line = raw.split("#", 1)[0].strip()
            if not line:
                continue
            if not os.path.isabs(line):
                line = os.path.abspath(os.path.join(base_dir, line))
            out.append(line)
    return out


def gather_extension_paths(paths: Sequence[str]) -> List[str]:
    expanded: List[str] = []
    for p in paths:
        if p.lower().endswith(".bxt"):
            expanded.extend(read_bxt(p))
        else:
            expanded.append(p)
    return [os.path.abspath(p) for p in expanded]


def register_module(module: Any, services: RuntimeServices, default_name: str) -> Tuple[str, ExtensionAPI]:
    """Run a Python module's `blue_register(ext)` hook and return its name and API."""
    api_version = getattr(module, "BLUE_EXTENSION_API_VERSION", EXTENSION_API_VERSION)
    if api_version != EXTENSION_API_VERSION:
        raise BlueExtensionError(
            f"Extension {default_name} requires API {api_version}, host supports {EXTENSION_API_VERSION}"
        )
    register = getattr(module, "blue_register", None)
    if register is None or not callable(register):
        raise BlueExtensionError(f"Extension {default_name} must define callable blue_register(ext)")
    ext_name = str(getattr(module, "BLUE_EXTENSION_NAME", default_name))
    ext = ExtensionAPI(services=services, ext_name=ext_name)
    register(ext)
    return ext_name, ext


def build_default_services() -> RuntimeServices:
    return RuntimeServices()


def load_runtime_services(paths: Sequence[str]) -> RuntimeServices:
    services = build_default_services()
    for path in gather_extension_paths(paths):
        module = load_extension_module(path)
        ext_name, ext = register_module(module, services, os.path.splitext(os.path.basename(path))[0])
        source = getattr(module, "BLUE_MODULE_SOURCE", None)
        if source is not None:
            services.modules[ext_name] = HostModule(name=ext_name, source=str(source), builtins=ext.builtins)
        else:
            services.builtins.extend(ext.builtins)
    return services


class StdlibLoader:
    """Resolves importable host modules and caches their parsed scripts."""

    def __init__(self, services: RuntimeServices) -> None:
        self.services = services
        self._hosts: Dict[str, HostModule] = {}
        self._programs: Dict[str, Program] = {}
        self._lock = threading.RLock()

    def has(self, name: str) -> bool:
        return name in self.services.modules or name in STDLIB_MODULES

    def host_module(self, name: str) -> HostModule:
        with self._lock:
            host = self._hosts.get(name)
            if host is not None:
                return host
            host = self.services.modules.get(name)
            if host is None:
                if name not in STDLIB_MODULES:
                    raise BlueExtensionError(f"Unknown stdlib module: {name}")
                module = importlib.import_module(f"ext.{name}")
                _, ext = register_module(module, self.services, name)
                host = HostModule(name=name, source=module.BLUE_MODULE_SOURCE, builtins=ext.builtins)
            self._hosts[name] = host
            return host

    def program(self, name: str) -> Program:
        with self._lock:
            program = self._programs.get(name)
            if program is None:
                program = Parser.from_source(self.host_module(name).source, f"<std:{name}>").parse()
                self._programs[name] = program
            return program
