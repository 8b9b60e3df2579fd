"""Attributes traced operations to the application code that started them."""

from __future__ import annotations

import functools
import inspect
import sys
from dataclasses import dataclass, replace
from typing import Callable, Sequence

from .config import CodeLevelMetricsConfig
from .errors import CodeLocationError
from .models import CodeLocation

MAX_STACK_DEPTH = 10
DEFAULT_IGNORED_PREFIX = "apmcore."

ATTR_CODE_LINENO = "code.lineno"
ATTR_CODE_NAMESPACE = "code.namespace"
ATTR_CODE_FILEPATH = "code.filepath"
ATTR_CODE_FUNCTION = "code.function"


@dataclass(frozen=True, slots=True)
class Frame:
    """One entry of a captured call stack."""

    function: str
    file_path: str
    line_no: int


FrameSource = Callable[[int, int], Sequence[Frame]]


def stack_frames(skip: int, limit: int) -> list[Frame]:
    """Capture up to ``limit`` frames, starting ``skip`` levels above the caller."""

    try:
        frame = sys._getframe(skip + 1)
    except ValueError:
        return []
    frames: list[Frame] = []
    while frame is not None and len(frames) < limit:
        code = frame.f_code
        module = frame.f_globals.get("__name__", "")
        function = f"{module}.{code.co_qualname}" if module else code.co_qualname
        frames.append(Frame(function=function, file_path=code.co_filename, line_no=frame.f_lineno))
        frame = frame.f_back
    return frames


@dataclass(frozen=True, slots=True)
class CodeLevelMetricsOptions:
    """Per-trace overrides; ``None`` prefixes fall back to configuration."""

    location_override: CodeLocation | None = None
    suppress: bool = False
    demand: bool = False
    ignored_prefixes: Sequence[str] | None = None
    path_prefixes: Sequence[str] | None = None

    def with_location(self, location: CodeLocation) -> CodeLevelMetricsOptions:
        return replace(self, location_override=location)

    def with_function_location(self, function: object, *, only_if_unset: bool = False) -> CodeLevelMetricsOptions:
        """Report ``function``'s definition; silently keeps ``self`` on failure."""

        if only_if_unset and self.location_override is not None:
            return self
        try:
            location = function_location(function)
        except CodeLocationError:
            return self
        return replace(self, location_override=location)


class CodeLocationResolver:
    """Walks the call stack past agent-internal frames.

    The frame source is injectable so the selection logic can be exercised
    with synthetic stacks.
    """

    def __init__(
        self,
        config: CodeLevelMetricsConfig,
        *,
        frame_source: FrameSource = stack_frames,
        max_depth: int = MAX_STACK_DEPTH,
    ) -> None:
        self._config = config
        self._frame_source = frame_source
        self._max_depth = max_depth

    def enabled_for(self, scope: str, options: CodeLevelMetricsOptions | None = None) -> bool:
        """Cheap check made before any stack capture."""

        if not self._config.enabled:
            return False
        if options is not None:
            if options.suppress:
                return False
            if options.demand:
                return True
        return "all" in self._config.scope or scope in self._config.scope

    def resolve(self, skip: int = 0, options: CodeLevelMetricsOptions | None = None) -> CodeLocation:
        options = options or CodeLevelMetricsOptions()
        if options.location_override is not None:
            location = options.location_override
        else:
            location = self._from_stack(skip + 1, self._ignored_prefixes(options))
        return _trim_path(location, self._path_prefixes(options))

    def attributes_for(
        self,
        scope: str,
        *,
        skip: int = 0,
        options: CodeLevelMetricsOptions | None = None,
    ) -> dict[str, object] | None:
        """Code-level attributes for a trace in ``scope``, or None when not wanted."""

        if not self.enabled_for(scope, options):
            return None
        return code_level_attributes(self.resolve(skip + 1, options))

    def _from_stack(self, skip: int, ignored: Sequence[str]) -> CodeLocation:
        frames = self._frame_source(skip + 1, self._max_depth)
        if not frames:
            return CodeLocation()
        chosen = frames[-1]
        for frame in frames:
            if not frame.function.startswith(tuple(ignored)):
                chosen = frame
                break
        return CodeLocation(line_no=chosen.line_no, function=chosen.function, file_path=chosen.file_path)

    def _ignored_prefixes(self, options: CodeLevelMetricsOptions) -> Sequence[str]:
        if options.ignored_prefixes is not None:
            return options.ignored_prefixes
        return self._config.ignored_prefixes or (DEFAULT_IGNORED_PREFIX,)

    def _path_prefixes(self, options: CodeLevelMetricsOptions) -> Sequence[str]:
        if options.path_prefixes is not None:
            return options.path_prefixes
        return self._config.path_prefixes


def _trim_path(location: CodeLocation, prefixes: Sequence[str]) -> CodeLocation:
    for prefix in prefixes:
        if not prefix:
            continue
        index = location.file_path.find(prefix)
        if index >= 0:
            return replace(location, file_path=location.file_path[index:])
    return location


def code_level_attributes(location: CodeLocation) -> dict[str, object]:
    return {
        ATTR_CODE_LINENO: location.line_no,
        ATTR_CODE_NAMESPACE: location.namespace,
        ATTR_CODE_FILEPATH: location.file_path,
        ATTR_CODE_FUNCTION: location.short_function,
    }


def this_code_location(skip: int = 0) -> CodeLocation:
    """Location of the caller (or ``skip`` levels further out)."""

    frames = stack_frames(skip + 1, 1)
    if not frames:
        return CodeLocation()
    frame = frames[0]
    return CodeLocation(line_no=frame.line_no, function=frame.function, file_path=frame.file_path)


def function_location(function: object) -> CodeLocation:
    """Location where ``function`` is defined."""

    if function is None:
        raise CodeLocationError("None passed to function_location")
    if not callable(function):
        raise CodeLocationError(f"Value of type {type(function).__name__} is not callable")
    target = inspect.unwrap(function)  # type: ignore[arg-type]
    while isinstance(target, functools.partial):
        target = target.func
    module = getattr(target, "__module__", None) or ""
    qualname = getattr(target, "__qualname__", None) or getattr(target, "__name__", "")
    name = f"{module}.{qualname}" if module else qualname
    code = getattr(target, "__code__", None)
    if code is not None:
        return CodeLocation(line_no=code.co_firstlineno, function=name, file_path=code.co_filename)
    try:
        file_path = inspect.getsourcefile(target) or ""  # type: ignore[arg-type]
        _, line_no = inspect.getsourcelines(target)  # type: ignore[arg-type]
    except (OSError, TypeError) as exc:
        raise CodeLocationError(f"Could not find code location for {name or target!r}") from exc
    return CodeLocation(line_no=line_no, function=name, file_path=file_path)


__all__ = [
    "ATTR_CODE_FILEPATH",
    "ATTR_CODE_FUNCTION",
    "ATTR_CODE_LINENO",
    "ATTR_CODE_NAMESPACE",
    "CodeLevelMetricsOptions",
    "CodeLocationResolver",
    "DEFAULT_IGNORED_PREFIX",
    "Frame",
    "FrameSource",
    "code_level_attributes",
    "function_location",
    "stack_frames",
    "this_code_location",
]
