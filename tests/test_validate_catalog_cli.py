import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scripts import validate_catalog


def _write_catalog(tmp_path, lessons, name="catalog.json"):
    path = tmp_path / name
    path.write_text(json.dumps({"version": 1, "lessons": lessons}), encoding="utf-8")
    return str(path)


def test_bundled_catalog_is_valid(capsys):
    exit_code = validate_catalog.main([])
    captured = capsys.readouterr()

    assert exit_code == 0
    assert captured.out.splitlines()[0] == "Catalog version 3: 22 lessons"
    assert "  Responsible Sourcing: 9 lessons" in captured.out
    assert captured.err == ""


def test_small_catalog_reports_module_coverage(small_catalog_path, capsys):
    exit_code = validate_catalog.main(["--catalog", str(small_catalog_path)])
    out = capsys.readouterr().out

    assert exit_code == 0
    report = json.loads(out[out.index("{"):])
    sourcing = report["modules"]["Responsible Sourcing"]
    assert sourcing["total"] == 2
    assert sourcing["heuristic_advanced_titles"] == ["Interactive Activity: Supply Chain Mapping Exercise"]
    emerging = report["modules"]["Emerging Technology & AI Integration"]
    assert emerging["declared_advanced"] == 1
    assert emerging["heuristic_advanced"] == 1


def test_invalid_template_fails(tmp_path, capsys):
    catalog = _write_catalog(
        tmp_path,
        [{"title": "Broken", "category": "General Solutions", "quiz": [{"question": "?", "options": ["a"], "correctAnswer": 4}]}],
    )

    exit_code = validate_catalog.main(["--catalog", catalog])

    assert exit_code == 1
    assert "Invalid template: Broken" in capsys.readouterr().err


def test_unreadable_catalog_fails(tmp_path, capsys):
    exit_code = validate_catalog.main(["--catalog", str(tmp_path / "missing.yaml")])
    assert exit_code == 1
    assert "Catalog rejected" in capsys.readouterr().err


def test_require_advanced_flags_modules_without_matches(tmp_path, capsys):
    catalog = _write_catalog(tmp_path, [{"title": "Circular Basics", "category": "General Solutions"}])

    assert validate_catalog.main(["--catalog", catalog]) == 0
    capsys.readouterr()
    assert validate_catalog.main(["--catalog", catalog, "--require-advanced"]) == 1
    assert "General Solutions" in capsys.readouterr().err
