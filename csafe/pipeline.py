"""csafe compilation pipeline.

Lexer → Parser → Resolver → Lowering (C++ text, or LLVM IR for the scalar
subset) for one unit with ``compile_source``, and for many units with
``Session.compile_files``, which orders units by their imports and compiles
each independent wave in parallel.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from csafe.ast_nodes import Node, Program
from csafe.config import CsafeConfig
from csafe.errors import (
    CompileError, Diagnostics, ErrorKind, InternalLoweringError, Stage,
)
from csafe.lexer import tokenize
from csafe.modules import DuplicateModuleError, ModuleExports, ModuleIndex
from csafe.parser import Parser
from csafe.pass1_resolve import Resolution, resolve
from csafe.pass2_lower import lower_to_cpp
from csafe.runtime import write_header

logger = logging.getLogger(__name__)

EMIT_KINDS = ("cpp", "llvm", "ast", "tokens")
_SUFFIXES = {"cpp": ".cpp", "llvm": ".ll", "ast": ".ast.json", "tokens": ".tokens"}


@dataclass
class CompileResult:
    """Outcome of compiling one unit."""
    filename: str
    diagnostics: Diagnostics
    emit: str = "cpp"
    output: Optional[str] = None
    module_name: str = ""
    exports: Optional[ModuleExports] = None
    resolution: Optional[Resolution] = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return not self.diagnostics.has_errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.filename,
            "ok": self.ok,
            "emit": self.emit,
            "errors": len(self.diagnostics.errors),
            "warnings": len(self.diagnostics.warnings),
            "diagnostics": self.diagnostics.to_list(),
        }


# ---------------------------------------------------------------------------
# Debug dumps
# ---------------------------------------------------------------------------

def ast_to_dict(node: Any) -> Any:
    """JSON-friendly view of an AST: node type, fields and start position."""
    if isinstance(node, Node):
        d: dict[str, Any] = {"node": type(node).__name__}
        if node.span is not None:
            d["at"] = f"{node.span.line}:{node.span.column}"
        for f in dataclasses.fields(node):
            if f.name == "span":
                continue
            d[f.name] = ast_to_dict(getattr(node, f.name))
        return d
    if isinstance(node, tuple):
        return [ast_to_dict(item) for item in node]
    return node


def dump_tokens(source: str, filename: str, diagnostics: Diagnostics) -> str:
    lines = []
    for tok in tokenize(source, filename, diagnostics):
        lines.append(f"{tok.span.line}:{tok.span.column}\t{tok.type.name}\t{tok.value!r}")
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Single unit
# ---------------------------------------------------------------------------

def _settings(config: Optional[CsafeConfig], emit: Optional[str]) -> tuple[CsafeConfig, str]:
    config = config if config is not None else CsafeConfig()
    emit = emit or config.target
    if emit not in EMIT_KINDS:
        raise ValueError(f"emit must be one of {EMIT_KINDS}, got {emit!r}")
    return config, emit


def _parse(source: str, filename: str, diagnostics: Diagnostics) -> Program:
    tokens = tokenize(source, filename, diagnostics)
    return Parser(tokens, filename, diagnostics).parse()


def _finish(result: CompileResult, program: Program, config: CsafeConfig, test: bool,
            index: Optional[ModuleIndex], lower: bool = True) -> CompileResult:
    """Resolve an already parsed unit, then lower it if it is error free."""
    diagnostics = result.diagnostics
    res = resolve(program, diagnostics, index)
    result.resolution = res
    result.module_name = res.module_name
    result.exports = res.exports
    if index is not None and res.exports is not None:
        try:
            index.register(res.exports)
        except DuplicateModuleError as exc:
            diagnostics.name_error(exc.name, program.span, str(exc))

    if config.werror:
        diagnostics.promote_warnings()
    if diagnostics.has_errors:
        logger.info("%s: %d error(s), no output", result.filename, len(diagnostics.errors))
        return result
    if not lower:
        return result

    try:
        if result.emit == "llvm":
            from csafe.pass3_emit import emit as emit_llvm
            output = emit_llvm(res, diagnostics)
        else:
            output = lower_to_cpp(res, test_harness=test, prelude=config.prelude)
    except InternalLoweringError as exc:
        diagnostics.internal_error(str(exc), exc.span)
        output = None

    if config.werror:
        diagnostics.promote_warnings()
    result.output = None if diagnostics.has_errors else output
    return result


def compile_source(source: str, filename: str = "<stdin>", emit: Optional[str] = None,
                   test: bool = False, strict: bool = False,
                   index: Optional[ModuleIndex] = None,
                   config: Optional[CsafeConfig] = None, lower: bool = True) -> CompileResult:
    """Compile one unit of csafe source.

    ``emit`` selects the output: ``cpp`` (default, or the config's target),
    ``llvm``, ``ast`` (JSON) or ``tokens``. ``test`` appends the test harness
    entry point. Exported symbols are registered in ``index`` so later units
    can import them. ``lower=False`` stops after the resolver. With
    ``strict`` any error diagnostic raises ``CompileError`` instead of being
    returned.
    """
    config, emit = _settings(config, emit)
    diagnostics = Diagnostics(filename)
    result = CompileResult(filename=filename, diagnostics=diagnostics, emit=emit)

    if emit == "tokens":
        result.output = dump_tokens(source, filename, diagnostics)
    else:
        program = _parse(source, filename, diagnostics)
        if emit == "ast":
            result.output = json.dumps(ast_to_dict(program), indent=2)
        else:
            _finish(result, program, config, test, index, lower)

    if strict and diagnostics.has_errors:
        raise CompileError(diagnostics.errors)
    return result


# ---------------------------------------------------------------------------
# Many units
# ---------------------------------------------------------------------------

@dataclass
class _Unit:
    path: str
    result: CompileResult
    source: Optional[str] = None
    program: Optional[Program] = None
    imports: list[str] = field(default_factory=list)


class Session:
    """Compiles a set of units that may import each other.

    Units are ordered into waves: a unit runs once every module it imports
    from the same set has been registered. Each wave is compiled by a
    thread pool; the shared ``ModuleIndex`` is the only state between units.
    """

    def __init__(self, config: Optional[CsafeConfig] = None, emit: Optional[str] = None,
                 test: bool = False, index: Optional[ModuleIndex] = None):
        self.config, self.emit = _settings(config, emit)
        if self.emit not in ("cpp", "llvm"):
            raise ValueError("a session emits 'cpp' or 'llvm'")
        self.test = test
        self.index = index if index is not None else ModuleIndex()

    def compile_files(self, paths: list[str], jobs: Optional[int] = None) -> list[CompileResult]:
        """Compile ``paths``; results come back in the order the paths were given."""
        jobs = jobs if jobs is not None else self.config.jobs
        if not jobs or jobs <= 0:
            jobs = min(os.cpu_count() or 1, max(len(paths), 1), 8)

        units = [self._read(path) for path in paths]
        with ThreadPoolExecutor(max_workers=jobs) as pool:
            list(pool.map(self._parse_unit, units))

        waves, cyclic = self._order([u for u in units if u.program is not None])
        for unit in cyclic:
            self._report_cycle(unit, cyclic)
        harness = self._harness_unit(units) if self.test else None

        for number, wave in enumerate(waves):
            logger.info("wave %d: %s", number, ", ".join(u.path for u in wave))
            with ThreadPoolExecutor(max_workers=jobs) as pool:
                list(pool.map(lambda u: self._compile_unit(u, u is harness), wave))
        return [u.result for u in units]

    def _read(self, path: str) -> _Unit:
        diagnostics = Diagnostics(path)
        result = CompileResult(filename=path, diagnostics=diagnostics, emit=self.emit)
        unit = _Unit(path=path, result=result)
        try:
            with open(path, "r", encoding="utf-8") as f:
                unit.source = f.read()
        except OSError as exc:
            diagnostics.report(ErrorKind.NAME_ERROR, f"Cannot read '{path}': {exc.strerror or exc}",
                               None, Stage.DRIVER)
            unit.source = None
        return unit

    def _parse_unit(self, unit: _Unit) -> None:
        if unit.source is None:
            return
        unit.program = _parse(unit.source, unit.path, unit.result.diagnostics)
        unit.imports = unit.program.imports

    def _order(self, units: list[_Unit]) -> tuple[list[list[_Unit]], list[_Unit]]:
        """Group units into dependency waves; whatever is left over is in a cycle."""
        providers: dict[str, _Unit] = {}
        for unit in units:
            name = unit.program.module_name
            if name and name not in providers:
                providers[name] = unit

        pending = {id(u): u for u in units}
        done: set[str] = set()
        waves: list[list[_Unit]] = []
        while pending:
            wave = [u for u in pending.values()
                    if all(i in done or i not in providers or providers[i] is u for i in u.imports)]
            if not wave:
                break
            waves.append(wave)
            for unit in wave:
                del pending[id(unit)]
                if unit.program.module_name:
                    done.add(unit.program.module_name)
        return waves, list(pending.values())

    def _report_cycle(self, unit: _Unit, cyclic: list[_Unit]) -> None:
        in_cycle = {u.program.module_name for u in cyclic if u.program.module_name}
        involved = sorted(i for i in unit.imports if i in in_cycle)
        name = unit.program.module_name or unit.path
        unit.result.diagnostics.name_error(
            name, unit.program.span,
            f"Import cycle: '{name}' imports {', '.join(repr(i) for i in involved)}, "
            "which cannot be resolved before it")

    def _harness_unit(self, units: list[_Unit]) -> Optional[_Unit]:
        """The unit that carries the test entry point: the program unit, else the last one."""
        parsed = [u for u in units if u.program is not None]
        for unit in parsed:
            if not unit.program.module_name:
                return unit
        return parsed[-1] if parsed else None

    def _compile_unit(self, unit: _Unit, harness: bool) -> None:
        _finish(unit.result, unit.program, self.config, self.test and harness, self.index)

    def write_outputs(self, results: list[CompileResult], out_dir: Optional[str] = None) -> list[Path]:
        """Write each successful unit's output; returns the files written."""
        out_dir = out_dir or self.config.out_dir or "."
        directory = Path(out_dir)
        directory.mkdir(parents=True, exist_ok=True)
        written: list[Path] = []
        for result in results:
            if result.output is None:
                continue
            target = directory / (Path(result.filename).stem + _SUFFIXES[result.emit])
            target.write_text(result.output, encoding="utf-8")
            written.append(target)
        if self.emit == "cpp" and self.config.prelude == "include" and written:
            written.append(write_header(directory))
        return written


__all__ = [
    "CompileResult", "Session", "compile_source", "ast_to_dict", "dump_tokens",
    "EMIT_KINDS",
]
