"""csafe CLI Tests.

Commands, output formats, exit codes and project configuration.
"""

import json

import pytest

from csafe.cli import main
from csafe.config import ConfigError, load_config

GOOD = 'func main() { print("hello"); }\n'
BAD = "func main() { print(missing); }\n"
DUPLICATE_CASE = "func main() { let n = 1; match (n) { case 1 { } case 1 { } default_case { } } }\n"


def _run(argv):
    with pytest.raises(SystemExit) as excinfo:
        main(argv)
    return excinfo.value.code


@pytest.fixture
def source(tmp_path):
    def write(text, name="prog.csafe"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return str(path)
    return write


class TestCompile:
    """csafe compile"""

    def test_prints_cpp(self, source, capsys):
        assert _run(["compile", source(GOOD)]) == 0
        out = capsys.readouterr().out
        assert "int main() {" in out
        assert 'csafe::print(std::string("hello"));' in out

    def test_errors_exit_one(self, source, capsys):
        assert _run(["compile", source(BAD)]) == 1
        err = capsys.readouterr().err
        assert "Undefined name 'missing'" in err
        assert "1 error(s), 0 warning(s)" in err

    def test_json_format(self, source, capsys):
        assert _run(["compile", source(BAD), "--format", "json"]) == 1
        payload = json.loads(capsys.readouterr().out)
        assert payload["ok"] is False
        [unit] = payload["units"]
        assert unit["errors"] == 1
        assert unit["diagnostics"][0]["kind"] == "name_error"

    def test_output_file(self, source, tmp_path):
        out = tmp_path / "prog.cpp"
        assert _run(["compile", source(GOOD), "-o", str(out)]) == 0
        assert "int main() {" in out.read_text()

    def test_missing_file(self, tmp_path, capsys):
        assert _run(["compile", str(tmp_path / "nope.csafe")]) == 1
        assert "File not found" in capsys.readouterr().err

    def test_object_needs_llvm(self, source, capsys):
        assert _run(["compile", source(GOOD), "-c"]) == 2
        assert "--object requires --emit=llvm" in capsys.readouterr().err

    def test_werror_flag(self, source):
        path = source(DUPLICATE_CASE)
        assert _run(["compile", path]) == 0
        assert _run(["compile", path, "--werror"]) == 1


class TestCheckAndBuild:
    """csafe check / csafe build"""

    def test_check(self, source, capsys):
        path = source(GOOD)
        assert _run(["check", path]) == 0
        assert capsys.readouterr().out.strip() == f"{path}: ok"

    def test_check_reports_errors(self, source):
        assert _run(["check", source(BAD)]) == 1

    def test_build(self, source, tmp_path, capsys):
        geo = source("module geo; export func area(w: int, h: int): int { return w * h; }", "geo.csafe")
        app = source("import geo; func main() { print(geo.area(h = 3, w = 4)); }", "app.csafe")
        out_dir = tmp_path / "out"
        assert _run(["build", app, geo, "--out-dir", str(out_dir), "-j", "2"]) == 0
        assert "geo::area(4, 3)" in (out_dir / "app.cpp").read_text()
        assert (out_dir / "geo.cpp").exists()
        printed = capsys.readouterr().out.split()
        assert str(out_dir / "app.cpp") in printed


class TestConfig:
    """.csaferc.yml / .csaferc.json"""

    def test_yaml_config_enables_werror(self, source, tmp_path):
        (tmp_path / ".csaferc.yml").write_text("werror: true\n", encoding="utf-8")
        assert _run(["compile", source(DUPLICATE_CASE)]) == 1

    def test_json_config(self, tmp_path):
        (tmp_path / ".csaferc.json").write_text('{"format": "json", "jobs": 2}', encoding="utf-8")
        config = load_config(start_dir=str(tmp_path))
        assert config.format == "json"
        assert config.jobs == 2
        assert config.source.endswith(".csaferc.json")

    def test_defaults_without_a_file(self, tmp_path):
        config = load_config(start_dir=str(tmp_path))
        assert config.target == "cpp" and config.werror is False

    def test_invalid_value(self, source, tmp_path, capsys):
        (tmp_path / ".csaferc.yml").write_text("jobs: -1\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_config(start_dir=str(tmp_path))
        assert _run(["compile", source(GOOD)]) == 2
        assert "Invalid configuration" in capsys.readouterr().err

    def test_quoted_boolean_is_rejected(self, tmp_path):
        (tmp_path / ".csaferc.yml").write_text('werror: "false"\n', encoding="utf-8")
        with pytest.raises(ConfigError, match="'werror' must be true or false"):
            load_config(start_dir=str(tmp_path))

    def test_jobs_must_be_a_number(self, tmp_path):
        (tmp_path / ".csaferc.json").write_text('{"jobs": "4"}', encoding="utf-8")
        with pytest.raises(ConfigError, match="'jobs' must be an integer"):
            load_config(start_dir=str(tmp_path))
