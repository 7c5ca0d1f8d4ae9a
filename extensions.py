"""Extension support: hooks into a running BASIC program and extra functions.

An extension is a Python file loaded by path. It must define
``verybasic_register(ext)``, which receives an ``ExtensionAPI`` bound to the
extension's name. Handlers are always called with the interpreter first:

- ``program_start(interp)`` / ``program_end(interp)``
- ``before_line(interp, line)`` / ``after_line(interp, line)`` with a
  ``LineContext``
- ``on_error(interp, error)``
- step rules: ``handler(interp, step)`` with a ``StepContext``
"""

from __future__ import annotations

import hashlib
import importlib.util
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Callable, Dict, List, Optional, Sequence

from expression import MATH_FUNCTIONS, ROUND_FUNCTIONS, FunctionImpl


EXTENSION_API_VERSION = 1

EVENTS = ("program_start", "before_line", "after_line", "on_error", "program_end")

Handler = Callable[..., None]


class ExtensionError(Exception):
    pass


@dataclass(frozen=True)
class ExtensionMetadata:
    name: str
    version: str = "0.0.0"
    requires_api: int = EXTENSION_API_VERSION


@dataclass(frozen=True)
class LineContext:
    """The program line about to run (or that just ran)."""

    index: int
    label: Optional[int]
    text: str


@dataclass(frozen=True)
class StepContext:
    step_index: int
    rule: str
    line_index: Optional[int]
    label: Optional[int]
    statement: Optional[str]


@dataclass(frozen=True)
class Hook:
    extension: str
    handler: Handler
    priority: int = 0


@dataclass(frozen=True)
class StepRule:
    extension: str
    handler: Handler
    every: int

    def due(self, step_index: int) -> bool:
        return step_index % self.every == 0


class HookRegistry:
    def __init__(self) -> None:
        self._hooks: Dict[str, List[Hook]] = {event: [] for event in EVENTS}
        self.step_rules: List[StepRule] = []

    def add_hook(self, event: str, hook: Hook) -> None:
        if event not in self._hooks:
            raise ExtensionError(f"Unknown event '{event}' (known: {', '.join(EVENTS)})")
        hooks = self._hooks[event]
        hooks.append(hook)
        # Higher priority first; equal priorities keep registration order.
        hooks.sort(key=lambda h: -h.priority)

    def hooks(self, event: str) -> Sequence[Hook]:
        return self._hooks.get(event, ())

    def wants(self, *events: str) -> bool:
        return any(self._hooks.get(event) for event in events)

    def add_step_rule(self, rule: StepRule) -> None:
        if rule.every < 1:
            raise ExtensionError(f"every_n_steps must be >= 1 (extension '{rule.extension}')")
        self.step_rules.append(rule)

    def due_rules(self, step_index: int) -> List[StepRule]:
        return [rule for rule in self.step_rules if rule.due(step_index)]


@dataclass
class RuntimeServices:
    metadata: List[ExtensionMetadata] = field(default_factory=list)
    hook_registry: HookRegistry = field(default_factory=HookRegistry)
    # upper-case name -> one-argument numeric function
    functions: Dict[str, FunctionImpl] = field(default_factory=dict)
    docs: Dict[str, str] = field(default_factory=dict)

    def describe_functions(self) -> List[str]:
        """One ``NAME: doc`` line per extension function, sorted by name."""
        return [f"{name}: {self.docs.get(name) or '(no description)'}" for name in sorted(self.functions)]


def _attach(register: Callable[[Handler], None], handler: Optional[Handler]):
    """Register ``handler`` now, or return a decorator that will."""
    if handler is not None:
        register(handler)
        return handler

    def deco(fn: Handler) -> Handler:
        register(fn)
        return fn

    return deco


class ExtensionAPI:
    def __init__(self, *, services: RuntimeServices, ext_name: str) -> None:
        self._services = services
        self.name = ext_name

    def metadata(self, *, name: Optional[str] = None, version: str = "0.0.0", requires_api: int = EXTENSION_API_VERSION) -> None:
        if requires_api != EXTENSION_API_VERSION:
            raise ExtensionError(
                f"Extension '{name or self.name}' requires API {requires_api}, host supports {EXTENSION_API_VERSION}"
            )
        self._services.metadata.append(ExtensionMetadata(name=name or self.name, version=version, requires_api=requires_api))

    def register_function(self, name: str, impl: FunctionImpl, *, doc: str = "") -> None:
        if not name:
            raise ExtensionError("Function name must be non-empty")
        key = name.upper()
        if key in ROUND_FUNCTIONS or key in MATH_FUNCTIONS:
            raise ExtensionError(f"Function '{key}' is built in and cannot be redefined")
        if key in self._services.functions:
            raise ExtensionError(f"Function '{key}' is already defined")
        self._services.functions[key] = impl
        self._services.docs[key] = doc

    def function(self, name: str, *, doc: str = ""):
        return _attach(lambda fn: self.register_function(name, fn, doc=doc), None)

    def on_event(self, event: str, handler: Optional[Handler] = None, *, priority: int = 0):
        registry = self._services.hook_registry
        return _attach(lambda fn: registry.add_hook(event, Hook(self.name, fn, priority)), handler)

    def every_n_steps(self, every: int, handler: Optional[Handler] = None):
        registry = self._services.hook_registry
        return _attach(lambda fn: registry.add_step_rule(StepRule(self.name, fn, every)), handler)


def _module_name(location: Path) -> str:
    # Two extensions with the same file name in different folders must not
    # share a sys.modules entry.
    digest = hashlib.sha256(str(location).encode("utf-8")).hexdigest()[:12]
    return f"verybasic_ext_{re.sub(r'[^0-9A-Za-z]', '_', location.stem)}_{digest}"


def load_extension_module(path: str) -> ModuleType:
    location = Path(path).resolve()
    if not location.is_file():
        raise ExtensionError(f"Extension not found: {path}")
    spec = importlib.util.spec_from_file_location(_module_name(location), location)
    if spec is None or spec.loader is None:
        raise ExtensionError(f"Failed to load extension module: {path}")
    module = importlib.util.module_from_spec(spec)

    # Siblings of the extension file are importable while it loads.
    folder = str(location.parent)
    sys.path.insert(0, folder)
    try:
        spec.loader.exec_module(module)
    finally:
        sys.path.remove(folder)
    return module


def register_extension(services: RuntimeServices, module: ModuleType, default_name: str) -> None:
    name = str(getattr(module, "VERYBASIC_EXTENSION_NAME", default_name))
    wanted = getattr(module, "VERYBASIC_EXTENSION_API_VERSION", EXTENSION_API_VERSION)
    if wanted != EXTENSION_API_VERSION:
        raise ExtensionError(f"Extension '{name}' requires API {wanted}, host supports {EXTENSION_API_VERSION}")
    register = getattr(module, "verybasic_register", None)
    if not callable(register):
        raise ExtensionError(f"Extension '{name}' must define callable verybasic_register(ext)")
    register(ExtensionAPI(services=services, ext_name=name))


def load_runtime_services(paths: Sequence[str]) -> RuntimeServices:
    services = RuntimeServices()
    for path in paths:
        register_extension(services, load_extension_module(path), Path(path).stem)
    return services
