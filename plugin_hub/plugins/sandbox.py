"""
Sandbox primitives for isolated plugin execution.

Sandboxed plugin code runs with a restricted builtins table. Its
``__import__`` is a RestrictedImporter created for that load only; the
process-wide ``builtins.__import__`` is never replaced, so the host and
other plugins keep importing normally.

Imports hand out read-only module views rather than the real modules, so
a plugin never reaches a module (``os``, ``sys``) through an attribute of
one it was allowed. Source is checked and rewritten before compilation:
dunder attributes outside a small set, and attributes leading to frames,
code objects or the event loop, are rejected outright; reads of private
attributes and all attribute writes go through an AttributeGuard.
"""

import ast
import asyncio
import builtins
import codecs
import logging
import os
import platform
import sys
import types
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Iterable, Iterator, Mapping, Optional, Set, Tuple

from ..core.interfaces.plugins import IPluginCache
from .registry import RegistryStore

logger = logging.getLogger(__name__)

# Builtins available to sandboxed code; getattr and friends are added guarded
SAFE_BUILTINS: Set[str] = {
    # Types and constructors
    'bool', 'bytearray', 'bytes', 'complex', 'dict', 'float', 'frozenset',
    'int', 'list', 'memoryview', 'object', 'set', 'slice', 'str', 'tuple', 'type',
    # Classes
    '__build_class__', 'classmethod', 'property', 'staticmethod', 'super',
    # Introspection
    'callable', 'hash', 'id', 'isinstance', 'issubclass', 'dir',
    # Iteration
    'aiter', 'all', 'anext', 'any', 'enumerate', 'filter', 'iter', 'len', 'map',
    'next', 'range', 'reversed', 'sorted', 'zip',
    # Math
    'abs', 'divmod', 'max', 'min', 'pow', 'round', 'sum',
    # Strings
    'ascii', 'bin', 'chr', 'format', 'hex', 'oct', 'ord', 'repr', 'print',
    # Constants
    'Ellipsis', 'NotImplemented',
    # Exceptions
    'ArithmeticError', 'AssertionError', 'AttributeError', 'BaseException',
    'ConnectionError', 'EOFError', 'Exception', 'GeneratorExit', 'ImportError',
    'IndexError', 'KeyError', 'LookupError', 'ModuleNotFoundError', 'NameError',
    'NotImplementedError', 'OSError', 'OverflowError', 'RecursionError',
    'RuntimeError', 'StopAsyncIteration', 'StopIteration', 'TimeoutError',
    'TypeError', 'UnicodeDecodeError', 'UnicodeEncodeError', 'UnicodeError',
    'ValueError', 'ZeroDivisionError', 'Warning', 'DeprecationWarning',
}

# Modules sandboxed plugins may import (and their submodules)
DEFAULT_ALLOWED_MODULES: Set[str] = {
    'base64', 'binascii', 'collections', 'datetime', 'enum', 'hashlib', 'hmac',
    'itertools', 'json', 'math', 're', 'time', 'urllib.parse', 'zlib',
}

# Modules whose sandbox view holds only the listed names; their submodules stay closed
CURATED_MODULES: Mapping[str, FrozenSet[str]] = types.MappingProxyType({
    'aiohttp': frozenset({
        'BasicAuth', 'ClientConnectionError', 'ClientError', 'ClientResponseError',
        'ClientSession', 'ClientTimeout', 'ContentTypeError', 'FormData',
        'ServerTimeoutError',
    }),
    'asyncio': frozenset({
        'CancelledError', 'Event', 'Lock', 'Queue', 'QueueEmpty', 'QueueFull',
        'Semaphore', 'TimeoutError', 'gather', 'shield', 'sleep', 'wait_for',
    }),
    'functools': frozenset({
        'cache', 'cached_property', 'cmp_to_key', 'lru_cache', 'partial', 'reduce',
        'total_ordering', 'update_wrapper', 'wraps',
    }),
    'typing': frozenset({
        'TYPE_CHECKING', 'Any', 'AsyncIterator', 'Awaitable', 'Callable', 'ClassVar',
        'Dict', 'FrozenSet', 'Generic', 'Iterable', 'Iterator', 'List', 'Literal',
        'Mapping', 'NamedTuple', 'Optional', 'Sequence', 'Set', 'Tuple', 'Type',
        'TypeVar', 'Union', 'cast',
    }),
})

# Never importable, even if a parent package is allowed
BLOCKED_MODULES: Set[str] = {
    'asyncio.subprocess', 'builtins', 'codecs', 'ctypes', 'importlib', 'io',
    'marshal', 'multiprocessing', 'os', 'pickle', 'posixpath', 'pty', 'shelve',
    'shutil', 'socket', 'subprocess', 'sys', 'urllib.request',
}

# Names injected into every sandbox and hidden from the plugin's exports
CAPABILITY_NAMES = frozenset({
    'TextDecoder', 'AbortEvent', 'CancelledError', 'process', 'plugin_cache',
})

# Dunder attributes plugin code may spell out
SAFE_DUNDERS: FrozenSet[str] = frozenset({
    '__aenter__', '__aexit__', '__aiter__', '__anext__', '__bool__', '__call__',
    '__contains__', '__delitem__', '__doc__', '__enter__', '__eq__', '__exit__',
    '__ge__', '__getitem__', '__gt__', '__hash__', '__init__', '__iter__',
    '__le__', '__len__', '__lt__', '__name__', '__ne__', '__next__', '__repr__',
    '__setitem__', '__str__',
})

# Dunder globals plugin code may name
SAFE_GLOBAL_DUNDERS: FrozenSet[str] = frozenset({'__all__', '__doc__', '__file__', '__name__'})

# Attributes reaching frames, code objects, class hierarchies or the event loop
UNSAFE_ATTRIBUTES: FrozenSet[str] = frozenset({
    'ag_await', 'ag_code', 'ag_frame', 'cr_await', 'cr_code', 'cr_frame',
    'cr_origin', 'f_back', 'f_builtins', 'f_code', 'f_globals', 'f_locals',
    'gi_code', 'gi_frame', 'gi_yieldfrom', 'get_coro', 'get_loop', 'get_stack',
    'loop', 'mro', 'print_stack', 'tb_frame', 'tb_next',
})

READ_GUARD = '__sandbox_getattr__'
WRITE_GUARD = '__sandbox_write__'
_RESERVED_PREFIX = '__sandbox'

# Module views are named so that no real module in sys.modules matches them
VIEW_PREFIX = '<sandbox>'


def _is_dunder(name: str) -> bool:
    return len(name) > 4 and name.startswith('__') and name.endswith('__')


def _is_private(name: str) -> bool:
    return name.startswith('_') and not _is_dunder(name)


def check_attribute_name(name: str) -> None:
    """
    Reject attribute names sandboxed code may never use, whether spelled
    out in source or passed to getattr().

    Raises:
        AttributeError: If the name is forbidden
    """
    if name in UNSAFE_ATTRIBUTES or (name.startswith('__') and name not in SAFE_DUNDERS):
        raise AttributeError(f"Attribute '{name}' is not accessible in the sandbox")


class AbortEvent(asyncio.Event):
    """Cancellation signal handed to plugins in place of :class:`asyncio.Event`."""


class RestrictedImporter:
    """
    Import hook for one sandboxed load.

    Only modules in the allow-list (or submodules of an allowed package) and
    the curated modules can be imported; the block-list takes precedence.
    Relative imports are denied. The hook returns module views, never the
    real modules.
    """

    def __init__(self,
                 allowed_modules: Optional[Iterable[str]] = None,
                 blocked_modules: Optional[Iterable[str]] = None,
                 curated_modules: Optional[Mapping[str, FrozenSet[str]]] = None):
        self.allowed_modules: Set[str] = set(
            DEFAULT_ALLOWED_MODULES if allowed_modules is None else allowed_modules)
        self.blocked_modules: Set[str] = set(
            BLOCKED_MODULES if blocked_modules is None else blocked_modules)
        self.curated_modules: Mapping[str, FrozenSet[str]] = (
            CURATED_MODULES if curated_modules is None else curated_modules)
        self._import: Callable[..., types.ModuleType] = builtins.__import__
        self._views: Dict[str, types.ModuleType] = {}

    def __call__(self, name: str, globals: Optional[Dict[str, Any]] = None,
                 locals: Optional[Dict[str, Any]] = None,
                 fromlist: Optional[Tuple[str, ...]] = (), level: int = 0) -> types.ModuleType:
        if level:
            raise ImportError("Relative imports are not allowed in the sandbox")

        if not self.is_allowed(name):
            # "from urllib import parse" is fine when every imported name is an allowed submodule
            requested = [f"{name}.{item}" for item in fromlist or ()]
            if not requested or not all(self.is_allowed(r) for r in requested):
                logger.warning(f"Sandbox: blocked import of module '{name}'")
                raise ImportError(f"Module '{name}' is not allowed in the sandbox")

        module = self._import(name, None, None, fromlist, 0)
        view = self.view(module)
        if fromlist:
            self._link(module, view, fromlist)
        else:
            # "import a.b.c" binds a; make sure a.b.c is reachable from its view
            for part in name.split('.')[1:]:
                module = getattr(module, part)
                child = self.view(module)
                view.__dict__[part] = child
                view = child
        return view

    def is_allowed(self, name: str) -> bool:
        """
        Check a dotted module name against the allow- and block-lists.

        Args:
            name: Module name

        Returns:
            True if the module may be imported
        """
        parts = name.split('.')
        prefixes = ['.'.join(parts[:i]) for i in range(1, len(parts) + 1)]
        if any(prefix in self.blocked_modules for prefix in prefixes):
            return False
        if name in self.curated_modules:
            return True
        if any(prefix in self.curated_modules for prefix in prefixes[:-1]):
            return False
        return any(prefix in self.allowed_modules for prefix in prefixes)

    def view(self, module: types.ModuleType) -> types.ModuleType:
        """
        Read-only stand-in for a module.

        Curated modules expose their listed names only. Other modules expose
        their public attributes when the module itself is allowed; attributes
        holding modules are kept only if that module is allowed too, and then
        as a view.
        """
        name = module.__name__
        view = self._views.get(name)
        if view is not None:
            return view

        view = types.ModuleType(f"{VIEW_PREFIX}.{name}", getattr(module, '__doc__', None))
        self._views[name] = view

        curated = self.curated_modules.get(name)
        if curated is not None:
            overrides = CURATED_OVERRIDES.get(name, {})
            for attr in sorted(curated):
                if attr in overrides:
                    view.__dict__[attr] = overrides[attr]
                elif hasattr(module, attr):
                    view.__dict__[attr] = getattr(module, attr)
            return view

        exposed = self.is_allowed(name)
        for attr, value in list(vars(module).items()):
            if attr.startswith('_'):
                continue
            if isinstance(value, types.ModuleType):
                if self.is_allowed(value.__name__):
                    view.__dict__[attr] = self.view(value)
            elif exposed:
                view.__dict__[attr] = value
        return view

    def _link(self, module: types.ModuleType, view: types.ModuleType, fromlist: Iterable[str]) -> None:
        for item in fromlist:
            child = getattr(module, item, None)
            if isinstance(child, types.ModuleType) and self.is_allowed(child.__name__):
                view.__dict__[item] = self.view(child)


# Sandbox replacements for host classes listed in CURATED_MODULES
CURATED_OVERRIDES: Mapping[str, Mapping[str, Any]] = types.MappingProxyType({
    'asyncio': types.MappingProxyType({'Event': AbortEvent}),
})


class AttributeGuard:
    """
    Runtime attribute checks for one sandboxed load.

    A plugin may read and write private attributes only on objects it
    created from its own classes, and may never modify modules, host
    classes or host functions.
    """

    def __init__(self, module_name: str) -> None:
        self._module_name = module_name

    def owns(self, obj: Any) -> bool:
        """True if obj was created by the plugin from classes it defined."""
        if isinstance(obj, types.ModuleType):
            return False
        if isinstance(obj, (types.FunctionType, types.MethodType)):
            return getattr(obj, '__module__', None) == self._module_name
        cls = obj if isinstance(obj, type) else type(obj)
        return all(klass.__module__ in (self._module_name, 'builtins') for klass in cls.__mro__)

    def read(self, obj: Any, name: str, *default: Any) -> Any:
        if not isinstance(name, str):
            raise TypeError(f"attribute name must be string, not '{type(name).__name__}'")
        check_attribute_name(name)
        if _is_private(name) and not self.owns(obj):
            logger.warning(f"Sandbox: denied read of '{name}' on {type(obj).__name__}")
            raise AttributeError(f"Attribute '{name}' of {type(obj).__name__} is not accessible in the sandbox")
        return getattr(obj, name, *default)

    def has(self, obj: Any, name: str) -> bool:
        try:
            self.read(obj, name)
        except AttributeError:
            return False
        return True

    def write(self, obj: Any, name: str) -> Any:
        """Check that obj.name may be assigned or deleted, and return obj."""
        if not isinstance(name, str):
            raise TypeError(f"attribute name must be string, not '{type(name).__name__}'")
        check_attribute_name(name)
        if isinstance(obj, type) and not _is_private(name):
            allowed = obj.__module__ == self._module_name
        elif isinstance(obj, (type, types.ModuleType, types.FunctionType, types.MethodType)) \
                or _is_private(name):
            allowed = self.owns(obj)
        else:
            allowed = True
        if not allowed:
            logger.warning(f"Sandbox: denied write of '{name}' on {obj!r}")
            raise AttributeError(f"Cannot modify '{name}' of {obj!r} in the sandbox")
        return obj

    def set(self, obj: Any, name: str, value: Any) -> None:
        setattr(self.write(obj, name), name, value)

    def delete(self, obj: Any, name: str) -> None:
        delattr(self.write(obj, name), name)


def _bound_identifiers(node: ast.AST) -> Iterator[str]:
    if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
        yield node.name
    elif isinstance(node, ast.arg):
        yield node.arg
    elif isinstance(node, ast.alias):
        yield node.asname or node.name
    elif isinstance(node, (ast.Global, ast.Nonlocal)):
        yield from node.names
    elif isinstance(node, ast.ExceptHandler) and node.name:
        yield node.name
    elif isinstance(node, (ast.MatchAs, ast.MatchStar)) and node.name:
        yield node.name
    elif isinstance(node, ast.MatchMapping) and node.rest:
        yield node.rest


def validate_source(tree: ast.AST, filename: str = '<plugin>') -> None:
    """
    Statically check parsed plugin source.

    Raises:
        AttributeError: If a forbidden attribute is spelled out
        NameError: If a forbidden or reserved name is used
    """
    for node in ast.walk(tree):
        line = getattr(node, 'lineno', '?')
        if isinstance(node, ast.Attribute):
            try:
                check_attribute_name(node.attr)
            except AttributeError as e:
                raise AttributeError(f"{e} ({filename}:{line})") from None
        elif isinstance(node, ast.MatchClass):
            # Keyword patterns read attributes without going through the guard
            for attr in node.kwd_attrs:
                if attr.startswith('_') or attr in UNSAFE_ATTRIBUTES:
                    raise AttributeError(
                        f"Attribute '{attr}' is not accessible in the sandbox ({filename}:{line})")
        elif isinstance(node, ast.Name):
            if node.id.startswith('__') and node.id not in SAFE_GLOBAL_DUNDERS:
                raise NameError(f"Name '{node.id}' is not allowed in the sandbox ({filename}:{line})")

        for identifier in _bound_identifiers(node):
            if identifier.startswith(_RESERVED_PREFIX):
                raise NameError(f"Name '{identifier}' is reserved ({filename}:{line})")


class _GuardAttributes(ast.NodeTransformer):
    """Route private reads and all attribute writes through the guard."""

    def visit_Attribute(self, node: ast.Attribute) -> ast.AST:
        self.generic_visit(node)
        if isinstance(node.ctx, ast.Load):
            if not _is_private(node.attr):
                return node
            call = ast.Call(
                func=ast.Name(id=READ_GUARD, ctx=ast.Load()),
                args=[node.value, ast.Constant(value=node.attr)],
                keywords=[],
            )
            return ast.copy_location(call, node)

        node.value = ast.copy_location(ast.Call(
            func=ast.Name(id=WRITE_GUARD, ctx=ast.Load()),
            args=[node.value, ast.Constant(value=node.attr)],
            keywords=[],
        ), node.value)
        return node


def compile_sandboxed(source: str, filename: str) -> types.CodeType:
    """
    Check, rewrite and compile plugin source for the sandbox.

    Raises:
        SyntaxError: If the source does not parse
        AttributeError: If the source spells out a forbidden attribute
        NameError: If the source uses a forbidden or reserved name
    """
    tree = ast.parse(source, filename=filename)
    validate_source(tree, filename)
    tree = ast.fix_missing_locations(_GuardAttributes().visit(tree))
    return compile(tree, filename, 'exec', dont_inherit=True)


class PluginCache(IPluginCache):
    """
    A plugin's slice of the runtime cache; each set() persists cache.json.

    Holds only the store's get and set closed over one plugin id, never the
    store itself.
    """

    __slots__ = ('_plugin_id', '_get', '_set')

    def __init__(self, store: RegistryStore, plugin_id: str) -> None:
        def get(key: str, default: Any = None) -> Any:
            return store.cache_get(plugin_id, key, default)

        def set_(key: str, value: Any) -> None:
            store.cache_set(plugin_id, key, value)

        self._plugin_id = plugin_id
        self._get = get
        self._set = set_

    @property
    def plugin_id(self) -> str:
        return self._plugin_id

    def get(self, key: str, default: Any = None) -> Any:
        return self._get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._set(key, value)

    def __repr__(self) -> str:
        return f"PluginCache({self._plugin_id!r})"


@dataclass(frozen=True)
class ProcessInfo:
    """Read-only view of the host process."""

    pid: int
    platform: str
    arch: str
    python_version: str

    @classmethod
    def current(cls) -> 'ProcessInfo':
        return cls(
            pid=os.getpid(),
            platform=sys.platform,
            arch=platform.machine(),
            python_version=platform.python_version(),
        )

    def write_stderr(self, text: str) -> None:
        sys.stderr.write(text)


def text_decoder(encoding: str = 'utf-8', errors: str = 'strict') -> codecs.IncrementalDecoder:
    """Incremental decoder for streamed bytes."""
    return codecs.getincrementaldecoder(encoding)(errors)


def build_capabilities(cache: IPluginCache) -> Mapping[str, Any]:
    """Read-only table of host capabilities handed to a plugin."""
    return types.MappingProxyType({
        'TextDecoder': text_decoder,
        'AbortEvent': AbortEvent,
        'CancelledError': asyncio.CancelledError,
        'process': ProcessInfo.current(),
        'plugin_cache': cache,
    })


def build_sandbox_builtins(importer: RestrictedImporter, guard: AttributeGuard) -> Dict[str, Any]:
    """Restricted builtins table with the given import hook and attribute guard."""
    sandbox_builtins = {
        name: getattr(builtins, name) for name in SAFE_BUILTINS if hasattr(builtins, name)
    }
    sandbox_builtins.update({
        '__import__': importer,
        'getattr': guard.read,
        'hasattr': guard.has,
        'setattr': guard.set,
        'delattr': guard.delete,
        READ_GUARD: guard.read,
        WRITE_GUARD: guard.write,
    })
    return sandbox_builtins


def build_sandbox_module(
    module_name: str,
    importer: RestrictedImporter,
    capabilities: Mapping[str, Any]
) -> types.ModuleType:
    """
    Create the module object sandboxed code is executed in.

    Args:
        module_name: Name given to the module
        importer: Import hook for this load
        capabilities: Names injected as globals

    Returns:
        Empty module whose globals hold the restricted builtins and capabilities
    """
    module = types.ModuleType(module_name)
    module.__dict__['__builtins__'] = build_sandbox_builtins(importer, AttributeGuard(module_name))
    module.__dict__.update(capabilities)
    return module
