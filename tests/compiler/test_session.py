"""csafe Session Tests.

Multi-unit builds: units are ordered by their imports, compiled in waves
and share exported symbols through one module index.
"""

import pytest

from csafe.config import CsafeConfig
from csafe.errors import CompileError, ErrorKind
from csafe.modules import ModuleIndex
from csafe.pipeline import Session, compile_source

GEO = """
module geo;

export const UNIT: int = 1;

export func area(w: int, h: int = 1): int {
    return w * h * UNIT;
}

func hidden(): int { return 0; }
"""

APP = """
import geo;

func main() {
    print(geo.area(h = 3, w = 4));
}
"""


def _write(tmp_path, **files):
    paths = []
    for name, text in files.items():
        path = tmp_path / f"{name}.csafe"
        path.write_text(text, encoding="utf-8")
        paths.append(str(path))
    return paths


class TestSingleUnit:
    """compile_source on its own."""

    def test_strict_raises(self):
        with pytest.raises(CompileError) as excinfo:
            compile_source("func main() { print(nope); }", strict=True)
        assert excinfo.value.errors[0].kind == ErrorKind.NAME_ERROR

    def test_shared_index_between_calls(self):
        index = ModuleIndex()
        lib = compile_source(GEO, filename="geo.csafe", index=index)
        assert lib.ok and lib.module_name == "geo"
        app = compile_source(APP, filename="app.csafe", index=index)
        assert app.ok, app.diagnostics.format_pretty()
        assert "geo::area(4, 3)" in app.output

    def test_token_and_ast_dumps(self):
        tokens = compile_source("let x = 1;", emit="tokens")
        assert "LET" in tokens.output.splitlines()[0]
        ast = compile_source("let x = 1;", emit="ast")
        assert '"node": "Program"' in ast.output

    def test_werror(self):
        source = "func f(n: int) { match (n) { case 1 { } case 1 { } default_case { } } }"
        assert compile_source(source).ok
        result = compile_source(source, config=CsafeConfig(werror=True))
        assert not result.ok
        assert result.output is None


class TestSession:
    """Several units in one build."""

    def test_importer_listed_first(self, tmp_path):
        paths = _write(tmp_path, app=APP, geo=GEO)
        results = Session().compile_files(paths, jobs=2)
        assert [r.filename for r in results] == paths
        assert all(r.ok for r in results), [r.diagnostics.format_pretty() for r in results]
        app, geo = results
        assert "geo::area(4, 3)" in app.output
        assert "namespace geo {" in geo.output
        assert "extern const std::int64_t UNIT;" in app.output

    def test_unexported_member(self, tmp_path):
        user = "import geo;\nfunc main() { print(geo.hidden()); }"
        paths = _write(tmp_path, geo=GEO, user=user)
        results = Session().compile_files(paths)
        assert results[0].ok
        assert [d.message for d in results[1].diagnostics.errors] == [
            "Module 'geo' does not export 'hidden'"]

    def test_import_cycle(self, tmp_path):
        a = "module a; import b; export func fa(): int { return 1; }"
        b = "module b; import a; export func fb(): int { return 2; }"
        results = Session().compile_files(_write(tmp_path, a=a, b=b))
        for result in results:
            [diag] = result.diagnostics.errors
            assert diag.kind == ErrorKind.NAME_ERROR
            assert diag.message.startswith("Import cycle")

    def test_missing_file(self, tmp_path):
        results = Session().compile_files([str(tmp_path / "absent.csafe")])
        [diag] = results[0].diagnostics.errors
        assert "Cannot read" in diag.message

    def test_write_outputs(self, tmp_path):
        paths = _write(tmp_path, geo=GEO, app=APP)
        out_dir = tmp_path / "build"
        session = Session(config=CsafeConfig(prelude="include"))
        results = session.compile_files(paths)
        written = session.write_outputs(results, out_dir=str(out_dir))
        names = sorted(p.name for p in written)
        assert names == ["app.cpp", "csafe_runtime.hpp", "geo.cpp"]
        assert '#include "csafe_runtime.hpp"' in (out_dir / "app.cpp").read_text()

    def test_harness_goes_to_program_unit(self, tmp_path):
        tested = GEO + '\ntest "area" { assert(area(2, 3) == 6); }\n'
        paths = _write(tmp_path, geo=tested, app=APP)
        geo, app = Session(test=True).compile_files(paths)
        assert "csafe::run_tests();" not in geo.output
        assert "csafe::run_tests();" in app.output

    def test_session_rejects_dump_targets(self):
        with pytest.raises(ValueError):
            Session(emit="ast")
