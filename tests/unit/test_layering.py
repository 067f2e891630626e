from __future__ import annotations

import importlib.util
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]


def _load_validator():
    spec = importlib.util.spec_from_file_location("validate_code_deps", REPO_ROOT / "scripts" / "validate_code_deps.py")
    assert spec is not None and spec.loader is not None
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)
    return mod


def test_package_respects_layers_and_has_no_cycles(capsys: pytest.CaptureFixture[str]) -> None:
    validator = _load_validator()

    errors, checked = validator.collect_errors(REPO_ROOT)

    assert errors == []
    assert checked > 20
    assert validator.main() == 0
    assert "No circular dependencies" in capsys.readouterr().out


def test_layer_lookup() -> None:
    validator = _load_validator()
    assert validator.get_module_layer("scalper/core/types") == 0
    assert validator.get_module_layer("scalper/execution/lifecycle") == 5
    assert validator.get_module_layer("scalper/brain/exit_policy") < validator.get_module_layer("scalper/execution/lifecycle")


def test_upward_import_is_reported(tmp_path: Path) -> None:
    validator = _load_validator()
    pkg = tmp_path / "scalper" / "core"
    pkg.mkdir(parents=True)
    bad = pkg / "types.py"
    bad.write_text("from scalper.execution.lifecycle import TradeLifecycleManager\n", encoding="utf-8")

    errors = validator.check_layer_violations(bad, validator.extract_imports(bad), tmp_path)

    assert len(errors) == 1
    assert "LAYER VIOLATION" in errors[0]
