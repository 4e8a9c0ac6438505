"""Validate the curriculum catalog and report per-module recommendation coverage."""
from __future__ import annotations

import argparse
import json
import sys
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence

from pydantic import ValidationError

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from curriculum import CatalogError, CurriculumCatalog, curriculum_modules, load_catalog
from env_validation import DEFAULT_CURRICULUM_PATH
from recommendations import MODULES, looks_advanced
from schemas import Lesson


def validate_templates(catalog: CurriculumCatalog) -> List[str]:
    """Run every template through the lesson schema; returns one message per failure."""
    errors: List[str] = []
    for position, template in enumerate(catalog.lessons, start=1):
        try:
            Lesson.model_validate({**template, "id": f"template-{position}", "ownerId": "catalog"})
        except ValidationError as exc:
            title = template.get("title") or f"#{position}"
            errors.append(f"{title}: {exc.error_count()} invalid field(s): {exc.errors()[0]['msg']}")
    return errors


def compute_module_coverage(templates: Sequence[Mapping[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """How many lessons per module an ``advanced`` recommendation would keep."""
    report: Dict[str, Dict[str, Any]] = {}
    for category in curriculum_modules(templates):
        in_module = [t for t in templates if t.get("category") == category]
        difficulties = Counter(str(t.get("difficulty") or "unspecified") for t in in_module)
        flagged = []
        for template in in_module:
            lesson = Lesson.model_construct(
                title=str(template.get("title") or ""),
                subtitle=template.get("subtitle"),
            )
            if looks_advanced(lesson):
                flagged.append(template["title"])
        declared = sum(1 for t in in_module if t.get("difficulty") == "advanced")
        report[category] = {
            "total": len(in_module),
            "recommendable_module": category in MODULES.values(),
            "difficulty_counts": dict(sorted(difficulties.items())),
            "declared_advanced": declared,
            "heuristic_advanced": len(flagged),
            "heuristic_advanced_titles": flagged,
        }
    return report


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--catalog",
        type=str,
        default=str(DEFAULT_CURRICULUM_PATH),
        help="Path to the catalog YAML/JSON file (default: bundled catalog)",
    )
    parser.add_argument(
        "--require-advanced",
        action="store_true",
        help="Fail when a module has no lesson left under an 'advanced' recommendation.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    try:
        catalog = load_catalog(Path(args.catalog))
    except CatalogError as exc:
        print(f"Catalog rejected: {exc}", file=sys.stderr)
        return 1

    errors = validate_templates(catalog)
    coverage = compute_module_coverage(catalog.lessons)
    print(f"Catalog version {catalog.version}: {len(catalog)} lessons")
    for category, stats in coverage.items():
        print(f"  {category}: {stats['total']} lessons, {stats['heuristic_advanced']} advanced by keyword")
    print(json.dumps({"version": catalog.version, "modules": coverage}, indent=2, ensure_ascii=False))

    for message in errors:
        print(f"Invalid template: {message}", file=sys.stderr)
    if args.require_advanced:
        for category, stats in coverage.items():
            if stats["recommendable_module"] and stats["heuristic_advanced"] == 0:
                print(f"Module {category!r} has no lesson matching an 'advanced' recommendation", file=sys.stderr)
                errors.append(category)
    return 1 if errors else 0


if __name__ == "__main__":
    raise SystemExit(main())
