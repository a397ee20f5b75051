import json
import subprocess
from pathlib import Path

import pytest

from driftwood.styles import (
    ImportInliner,
    Minifier,
    NestingDesugarer,
    StylesheetError,
    StylesheetPipeline,
    UtilityClassGenerator,
    create_default_pipeline,
)

NESTED = """/* site styles */
.a {
  color: red;
  &:hover { color: blue; }
  .b, .c { margin: 0 }
  > .d { padding: 0; }
  @media (min-width: 768px) {
    padding: 1rem;
  }
}
@keyframes spin { from { transform: rotate(0deg); } to { transform: rotate(360deg); } }
"""

FLAT = """/* site styles */
.a {
  color: red;
}
.a:hover {
  color: blue;
}
.a .b, .a .c {
  margin: 0;
}
.a > .d {
  padding: 0;
}
@media (min-width: 768px) {
  .a {
    padding: 1rem;
  }
}
@keyframes spin {
  from {
    transform: rotate(0deg);
  }
  to {
    transform: rotate(360deg);
  }
}
"""


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def no_tailwind(monkeypatch):
    monkeypatch.setattr("driftwood.styles.find_executable", lambda name, root=None: None)


def test_nesting_desugarer_flattens_rules(tmp_path):
    assert NestingDesugarer().apply(NESTED, tmp_path / "main.css") == FLAT


def test_nesting_desugarer_keeps_strings_urls_and_statements(tmp_path):
    css = (
        "@tailwind base;\n"
        '.icon { background: url(data:image/png;base64,AAA=); content: "{ ; }"; }\n'
        ".x, .y { &.active, &:focus { color: red } }\n"
        "@supports (display: grid) { .grid { display: grid; .cell { margin: 0 } } }\n"
    )
    out = NestingDesugarer().apply(css, tmp_path / "main.css")
    assert out.startswith("@tailwind base;\n")
    assert "background: url(data:image/png;base64,AAA=);" in out
    assert 'content: "{ ; }";' in out
    assert ".x.active, .x:focus, .y.active, .y:focus {" in out
    assert "@supports (display: grid) {\n  .grid {\n    display: grid;\n  }\n  .grid .cell {" in out


def test_nesting_desugarer_is_deterministic(tmp_path):
    stage = NestingDesugarer()
    assert stage.apply(NESTED, tmp_path / "a.css") == stage.apply(NESTED, tmp_path / "a.css")
    assert stage.apply(FLAT, tmp_path / "a.css") == FLAT


def test_import_inliner(tmp_path):
    write(tmp_path / "css" / "partials" / "a.css", ".a { color: red; }\n")
    write(tmp_path / "css" / "b.css", "@import './partials/a.css';\n.b { color: blue; }\n")
    write(
        tmp_path / "node_modules" / "pkg" / "package.json",
        json.dumps({"name": "pkg", "style": "dist/pkg.css"}),
    )
    write(tmp_path / "node_modules" / "pkg" / "dist" / "pkg.css", ".pkg { margin: 0; }\n")
    main = write(
        tmp_path / "css" / "main.css",
        '@import "./partials/a.css";\n'
        "@import url(b.css) print;\n"
        '@import "https://fonts.example.com/inter.css";\n'
        "@import 'pkg';\n"
        "body { margin: 0; }\n",
    )

    out = ImportInliner(tmp_path).apply(main.read_text(encoding="utf-8"), main)
    assert out.count(".a { color: red; }") == 1
    assert "@media print {\n.b { color: blue; }\n}" in out
    assert '@import "https://fonts.example.com/inter.css";' in out
    assert ".pkg { margin: 0; }" in out
    assert out.rstrip().endswith("body { margin: 0; }")


def test_import_inliner_missing_import(tmp_path):
    main = write(tmp_path / "css" / "main.css", "@import './nope.css';\n")
    with pytest.raises(StylesheetError) as exc_info:
        ImportInliner(tmp_path).apply(main.read_text(encoding="utf-8"), main)
    assert exc_info.value.path == main
    assert "nope.css" in exc_info.value.message


def test_utility_generator_without_cli_passes_through(no_tailwind, tmp_path, caplog):
    stage = UtilityClassGenerator(tmp_path, ["**/*.jinja"])
    with caplog.at_level("WARNING", logger="driftwood.styles"):
        assert stage.apply("@tailwind base;", tmp_path / "main.css") == "@tailwind base;"
    assert "Tailwind CSS CLI not found" in caplog.text


def test_utility_generator_runs_cli(monkeypatch, tmp_path):
    monkeypatch.setattr(
        "driftwood.styles.find_executable", lambda name, root=None: "/fake/bin/tailwindcss"
    )
    seen = {}

    def fake_run(cmd, capture_output=None, text=None, cwd=None):
        seen["cmd"] = cmd
        seen["cwd"] = cwd
        config_path = Path(cmd[cmd.index("--config") + 1])
        seen["config"] = config_path.read_text(encoding="utf-8")
        source = Path(cmd[cmd.index("-i") + 1]).read_text(encoding="utf-8")
        Path(cmd[cmd.index("-o") + 1]).write_text(
            source.replace("@tailwind utilities;", ".p-container { padding: var(--container-spacing); }"),
            encoding="utf-8",
        )
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr("driftwood.styles.subprocess.run", fake_run)
    stage = UtilityClassGenerator(tmp_path, ["**/*.jinja", "_posts/*.md"])
    out = stage.apply("@tailwind utilities;", tmp_path / "main.css")

    assert out == ".p-container { padding: var(--container-spacing); }"
    assert seen["cmd"][0] == "/fake/bin/tailwindcss"
    assert seen["cwd"] == tmp_path
    assert 'require("tailwindcss-debug-screens")' in seen["config"]
    assert json.dumps(str(tmp_path / "_posts/*.md")) in seen["config"]


def test_utility_generator_failure_raises(monkeypatch, tmp_path):
    monkeypatch.setattr(
        "driftwood.styles.find_executable", lambda name, root=None: "/fake/bin/tailwindcss"
    )

    def fake_run(cmd, capture_output=None, text=None, cwd=None):
        return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="CssSyntaxError: boom")

    monkeypatch.setattr("driftwood.styles.subprocess.run", fake_run)
    with pytest.raises(StylesheetError, match="boom"):
        UtilityClassGenerator(tmp_path, []).apply(".a{}", tmp_path / "main.css")


def test_minifier(tmp_path):
    out = Minifier().apply(FLAT, tmp_path / "main.css")
    assert "\n" not in out
    assert "site styles" not in out
    assert ".a:hover{color:blue" in out
    assert "@keyframes spin{" in out
    assert len(out) < len(FLAT)


def test_default_pipeline_stages_follow_environment(no_tailwind, tmp_path):
    settings = {"styles": {"content": []}, "theme": {}}
    dev = create_default_pipeline(tmp_path, settings, "development")
    prod = create_default_pipeline(tmp_path, settings, "production")
    assert dev.stage_names == ["import", "utilities", "nesting"]
    assert prod.stage_names == ["import", "utilities", "nesting", "minify"]


def test_pipeline_run_production_is_smaller(no_tailwind, tmp_path):
    write(tmp_path / "css" / "nested.css", NESTED)
    source = write(tmp_path / "css" / "main.css", "@import './nested.css';\n")
    settings = {"styles": {"content": []}}

    dev_out = tmp_path / "dev" / "main.css"
    prod_out = tmp_path / "prod" / "main.css"
    dev = create_default_pipeline(tmp_path, settings, "development").run(source, dev_out)
    prod = create_default_pipeline(tmp_path, settings, "production").run(source, prod_out)

    assert dev_out.read_text(encoding="utf-8") == dev == FLAT
    assert prod_out.read_text(encoding="utf-8") == prod
    assert len(prod) < len(dev)
    assert create_default_pipeline(tmp_path, settings, "production").run(source, prod_out) == prod


def test_pipeline_runs_stages_in_order(tmp_path):
    class Tag:
        def __init__(self, name):
            self.name = name

        def apply(self, css, source):
            return css + self.name

    assert StylesheetPipeline([Tag("a"), Tag("b")]).process("", tmp_path / "x.css") == "ab"


def test_nesting_desugarer_keeps_escaped_selectors(tmp_path):
    css = (
        r".before\:content-\[\'\'\]::before {" "\n"
        "  --tw-content: '';\n"
        "  content: var(--tw-content);\n"
        "}\n"
        r".w-1\/2, .md\:flex { display: flex }" "\n"
        ".post { & p { margin: 0; } }\n"
    )
    expected = (
        r".before\:content-\[\'\'\]::before {" "\n"
        "  --tw-content: '';\n"
        "  content: var(--tw-content);\n"
        "}\n"
        r".w-1\/2, .md\:flex {" "\n"
        "  display: flex;\n"
        "}\n"
        ".post p {\n"
        "  margin: 0;\n"
        "}\n"
    )
    assert NestingDesugarer().apply(css, tmp_path / "main.css") == expected


def test_import_inliner_ignores_commented_imports(tmp_path):
    write(tmp_path / "css" / "old.css", ".old { color: red; }\n")
    main = write(
        tmp_path / "css" / "main.css",
        '/* @import "missing.css"; */\n'
        "/*\n@import './old.css';\n*/\n"
        "body { margin: 0; }\n",
    )
    out = ImportInliner(tmp_path).apply(main.read_text(encoding="utf-8"), main)
    assert out == main.read_text(encoding="utf-8")
    assert ".old" not in out
