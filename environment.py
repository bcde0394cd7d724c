from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Set, Tuple

from objects import BlueRuntimeError, Value, inspect


@dataclass
class Environment:
    parent: Optional["Environment"] = None
    values: Dict[str, Value] = field(default_factory=dict)
    immutable: Set[str] = field(default_factory=set)

    def _find_env(self, name: str) -> Optional["Environment"]:
        env: Optional[Environment] = self
        while env is not None:
            if name in env.values:
                return env
            env = env.parent
        return None

    def child(self) -> "Environment":
        return Environment(parent=self)

    def define(self, name: str, value: Value, *, immutable: bool = False) -> None:
        """Bind `name` in this scope, as `var` or `val`."""
        if name in self.immutable:
            raise BlueRuntimeError(f"'{name}' is immutable", kind="Name")
        self.values[name] = value
        if immutable:
            self.immutable.add(name)

    def set(self, name: str, value: Value) -> None:
        env = self._find_env(name)
        if env is None:
            self.values[name] = value
            return
        if name in env.immutable:
            raise BlueRuntimeError(f"'{name}' is immutable", kind="Name")
        env.values[name] = value

    def get(self, name: str) -> Value:
        env = self._find_env(name)
        if env is not None:
            return env.values[name]
        raise BlueRuntimeError(f"identifier not found: {name}", kind="Name")

    def get_optional(self, name: str) -> Optional[Value]:
        env = self._find_env(name)
        if env is not None:
            return env.values[name]
        return None

    def delete(self, name: str) -> None:
        env = self._find_env(name)
        if env is None:
            raise BlueRuntimeError(f"identifier not found: {name}", kind="Name")
        if name in env.immutable:
            raise BlueRuntimeError(f"'{name}' is immutable", kind="Name")
        del env.values[name]

    def remove_local(self, name: str) -> None:
        """Drop a binding from this scope only, ignoring immutability."""
        self.values.pop(name, None)
        self.immutable.discard(name)

    def has(self, name: str) -> bool:
        return self._find_env(name) is not None

    def is_immutable(self, name: str) -> bool:
        env = self._find_env(name)
        return env is not None and name in env.immutable

    def items(self) -> Iterator[Tuple[str, Value]]:
        return iter(list(self.values.items()))

    def copy_chain(self) -> "Environment":
        """Copy every frame up to the root so rebinding in the copy stays local."""
        parent = self.parent.copy_chain() if self.parent is not None else None
        return Environment(parent=parent, values=dict(self.values), immutable=set(self.immutable))

    def snapshot(self) -> Dict[str, str]:
        def _render(val: Value) -> str:
            rendered = inspect(val, True)
            if len(rendered) > 80:
                rendered = rendered[:77] + "..."
            return f"{val.type}:{rendered}"

        return {k: _render(v) for k, v in list(self.values.items())}
