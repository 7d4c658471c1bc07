"""Register of request and response modifier factories and their loader."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Optional

from gatewayproxy.registry import Namespaced

NAMESPACE = "gatewayproxy/proxy/plugin"
_REQUEST_NAMESPACE = NAMESPACE + "/request"
_RESPONSE_NAMESPACE = NAMESPACE + "/response"

Modifier = Callable[[Any], Any]
ModifierFactory = Callable[[dict], Optional[Modifier]]
RegisterModifierFunc = Callable[[str, ModifierFactory, bool, bool], None]

_modifier_register = Namespaced()


class LoaderError(Exception):
    """One or more modifier plugins could not be loaded."""

    def __init__(self, errors: list[BaseException], loaded: int = 0) -> None:
        self.errors = list(errors)
        self.loaded = loaded
        messages = "\n".join(str(error) for error in self.errors)
        super().__init__(f"plugin loader found {len(self.errors)} error(s): \n{messages}")

    def __len__(self) -> int:
        return len(self.errors)


def _get_modifier(namespace: str, name: str) -> ModifierFactory | None:
    registry = _modifier_register.get(namespace)
    if registry is None:
        return None
    factory = registry.get(name, None)
    return factory if callable(factory) else None


def get_request_modifier(name: str) -> ModifierFactory | None:
    """Return the request modifier factory registered as ``name``, or None."""
    return _get_modifier(_REQUEST_NAMESPACE, name)


def get_response_modifier(name: str) -> ModifierFactory | None:
    """Return the response modifier factory registered as ``name``, or None."""
    return _get_modifier(_RESPONSE_NAMESPACE, name)


def register_modifier(
    name: str,
    factory: ModifierFactory,
    applies_to_request: bool,
    applies_to_response: bool,
) -> None:
    """Register ``factory`` under ``name`` for requests and/or responses."""
    if applies_to_request:
        _modifier_register.register(_REQUEST_NAMESPACE, name, factory)
    if applies_to_response:
        _modifier_register.register(_RESPONSE_NAMESPACE, name, factory)


def _plugin_name(registerer: Any) -> str:
    name = getattr(registerer, "name", None)
    return name if isinstance(name, str) else type(registerer).__name__


def _open(registerer: Any, register_func: RegisterModifierFunc, logger: Any) -> None:
    register_modifiers = getattr(registerer, "register_modifiers", None)
    if not callable(register_modifiers):
        raise TypeError("modifier plugin loader: unknown type")
    if logger is not None:
        register_logger = getattr(registerer, "register_logger", None)
        if callable(register_logger):
            register_logger(logger)
    register_modifiers(register_func)


def load(
    registerers: Iterable[Any],
    register_func: RegisterModifierFunc = register_modifier,
    logger: logging.Logger | None = None,
) -> int:
    """Register the modifiers exposed by each registerer; return how many loaded.

    Each registerer offers ``register_modifiers(register_func)`` and, optionally,
    ``register_logger(logger)``. Raises LoaderError listing the failures, with the
    number of plugins loaded in its ``loaded`` attribute.
    """
    errors: list[BaseException] = []
    loaded = 0
    for index, registerer in enumerate(registerers):
        try:
            _open(registerer, register_func, logger)
        except Exception as exc:
            error = RuntimeError(f"plugin #{index} ({_plugin_name(registerer)}): {exc}")
            error.__cause__ = exc
            errors.append(error)
            continue
        loaded += 1
    if errors:
        raise LoaderError(errors, loaded)
    return loaded