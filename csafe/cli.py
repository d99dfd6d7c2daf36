"""csafe CLI — Command-line interface for the csafe compiler.

Commands:
  csafe compile <file.csafe>         — Lex, parse, resolve and lower one unit
  csafe check <file.csafe>           — Front end only (no output)
  csafe build <files...>             — Compile units that import each other
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from csafe import __version__
from csafe.config import ConfigError, CsafeConfig, FORMATS, PRELUDES, load_config
from csafe.pipeline import EMIT_KINDS, CompileResult, Session, compile_source
from csafe.runtime import HARNESS_MACRO, HEADER_NAME, write_header


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _load_config(args: argparse.Namespace, start_dir: str) -> Optional[CsafeConfig]:
    try:
        config = load_config(getattr(args, "config", None), start_dir=start_dir)
    except (ConfigError, OSError) as e:
        print(json.dumps({"error": f"Invalid configuration: {e}"}), file=sys.stderr)
        return None
    overrides = {
        "werror": True if getattr(args, "werror", False) else None,
        "format": getattr(args, "format", None),
        "prelude": getattr(args, "prelude", None),
        "jobs": getattr(args, "jobs", None),
        "out_dir": getattr(args, "out_dir", None),
    }
    emit = getattr(args, "emit", None)
    if emit in ("cpp", "llvm"):
        overrides["target"] = emit
    return config.merged(**overrides)


def _report(results: list[CompileResult], fmt: str, extra: Optional[dict] = None) -> None:
    """Print diagnostics: JSON on stdout, or one line each on stderr."""
    if fmt == "json":
        payload: dict = {"units": [r.to_dict() for r in results], "ok": all(r.ok for r in results)}
        if extra:
            payload.update(extra)
        print(json.dumps(payload, indent=2))
        return
    for result in results:
        if len(result.diagnostics):
            print(result.diagnostics.format_pretty(), file=sys.stderr)
    errors = sum(len(r.diagnostics.errors) for r in results)
    warnings = sum(len(r.diagnostics.warnings) for r in results)
    if errors or warnings:
        print(f"{errors} error(s), {warnings} warning(s)", file=sys.stderr)


def _read_source(path: str) -> Optional[str]:
    if not os.path.exists(path):
        print(json.dumps({"error": f"File not found: {path}"}), file=sys.stderr)
        return None
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def cmd_compile(args: argparse.Namespace) -> int:
    """Compile one csafe source file."""
    source = _read_source(args.file)
    if source is None:
        return 1
    config = _load_config(args, os.path.dirname(os.path.abspath(args.file)))
    if config is None:
        return 2

    emit = args.emit or config.target
    result = compile_source(source, filename=args.file, emit=emit, test=args.test, config=config)
    extra: dict = {}

    if result.output is not None:
        if args.object:
            if emit != "llvm":
                print(json.dumps({"error": "--object requires --emit=llvm"}), file=sys.stderr)
                return 2
            from csafe.pass3_emit import compile_to_object
            obj_path = args.output or str(Path(args.file).with_suffix(".o"))
            with open(obj_path, "wb") as f:
                f.write(compile_to_object(result.output))
            extra = {"status": "object_emitted", "path": obj_path}
        elif args.output:
            with open(args.output, "w", encoding="utf-8") as f:
                f.write(result.output)
            extra = {"status": "written", "path": args.output}
            if emit == "cpp" and config.prelude == "include":
                header = write_header(os.path.dirname(os.path.abspath(args.output)))
                extra["runtime_header"] = str(header)
        elif config.format == "json":
            extra = {"output": result.output}
        else:
            sys.stdout.write(result.output)

    _report([result], config.format, extra)
    return 0 if result.ok else 1


def cmd_check(args: argparse.Namespace) -> int:
    """Run the front end (lexer, parser, resolver) without producing output."""
    source = _read_source(args.file)
    if source is None:
        return 1
    config = _load_config(args, os.path.dirname(os.path.abspath(args.file)))
    if config is None:
        return 2
    result = compile_source(source, filename=args.file, config=config, lower=False)
    _report([result], config.format)
    if result.ok and config.format != "json":
        print(f"{args.file}: ok")
    return 0 if result.ok else 1


def cmd_build(args: argparse.Namespace) -> int:
    """Compile several units, respecting their imports, and write the outputs."""
    missing = [p for p in args.files if not os.path.exists(p)]
    if missing:
        print(json.dumps({"error": f"File not found: {', '.join(missing)}"}), file=sys.stderr)
        return 1
    config = _load_config(args, os.path.dirname(os.path.abspath(args.files[0])))
    if config is None:
        return 2

    session = Session(config=config, emit=args.emit or config.target, test=args.test)
    results = session.compile_files(args.files, jobs=config.jobs or None)
    written = session.write_outputs(results) if all(r.ok for r in results) else []
    _report(results, config.format, {"written": [str(p) for p in written]})
    if written and config.format != "json":
        for path in written:
            print(path)
    return 0 if all(r.ok for r in results) else 1


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="csafe",
        description="csafe — compiler front end for the C++Safe dialect",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Log pipeline progress (-vv for debug output)")
    parser.add_argument("--config", default=None,
                        help="Config file (default: nearest .csaferc.yml / .csaferc.json)")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--format", choices=list(FORMATS), default=None,
                       help="Diagnostic format (default: pretty)")
        p.add_argument("--werror", action="store_true", help="Treat warnings as errors")

    # compile
    p_compile = subparsers.add_parser("compile", help=f"Compile a csafe source file ({', '.join(EMIT_KINDS)})")
    p_compile.add_argument("file", help="csafe source file (.csafe)")
    p_compile.add_argument("--emit", choices=list(EMIT_KINDS), default=None,
                           help="What to produce (default: C++ source, or the configured target)")
    p_compile.add_argument("--test", action="store_true",
                           help=f"Append the test harness main (enabled by -D{HARNESS_MACRO})")
    p_compile.add_argument("-o", "--output", help="Output path (default: stdout)")
    p_compile.add_argument("-c", "--object", action="store_true",
                           help="With --emit=llvm, compile the IR to a native object file")
    p_compile.add_argument("--prelude", choices=list(PRELUDES), default=None,
                           help=f"Inline the runtime or #include \"{HEADER_NAME}\"")
    add_common(p_compile)
    p_compile.set_defaults(func=cmd_compile)

    # check
    p_check = subparsers.add_parser("check", help="Check a source file without producing output")
    p_check.add_argument("file", help="csafe source file (.csafe)")
    add_common(p_check)
    p_check.set_defaults(func=cmd_check)

    # build
    p_build = subparsers.add_parser("build", help="Compile several units that import each other")
    p_build.add_argument("files", nargs="+", help="csafe source files")
    p_build.add_argument("--emit", choices=["cpp", "llvm"], default=None, help="Target (default: cpp)")
    p_build.add_argument("--test", action="store_true", help="Add the test harness to the program unit")
    p_build.add_argument("-j", "--jobs", type=int, default=None, help="Parallel units (0 = auto)")
    p_build.add_argument("--out-dir", dest="out_dir", default=None, help="Output directory")
    p_build.add_argument("--prelude", choices=list(PRELUDES), default=None,
                         help=f"Inline the runtime or #include \"{HEADER_NAME}\"")
    add_common(p_build)
    p_build.set_defaults(func=cmd_build)

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
