import csv
import json

import pytest

from cli.main import main
from lossgrad.training.gradcheck import DEFAULT_CASES
from lossgrad.training.losses import REGISTRY


def test_cli_checks_every_default_case(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    main(["--all", "--with-mask", "--with-example-weights", "--with-feature-weights", "--out", "report"])
    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == len(DEFAULT_CASES)
    records = [json.loads(line) for line in lines]
    assert all(r["passed"] for r in records)
    assert len({r["run_id"] for r in records}) == 1
    assert len((tmp_path / "report" / "gradcheck.jsonl").read_text().splitlines()) == len(DEFAULT_CASES)
    with (tmp_path / "report" / "gradcheck.csv").open(newline="") as handle:
        assert len(list(csv.DictReader(handle))) == len(DEFAULT_CASES)


def test_cli_single_case(capsys):
    main(["--loss", "mcxent", "--activation", "softmax", "--seed", "4"])
    record = json.loads(capsys.readouterr().out)
    assert record["loss"] == "mcxent" and record["activation"] == "softmax"
    assert record["passed"] is True


def test_cli_objective_config(tmp_path, capsys):
    path = tmp_path / "objective.yaml"
    path.write_text("loss:\n  name: l2\n  weights: [1.0, 0.5, 2.0]\nactivation: tanh\n")
    main(["--config", str(path), "--with-mask", "--with-example-weights"])
    record = json.loads(capsys.readouterr().out)
    assert record["loss"] == "l2" and record["activation"] == "tanh"
    assert record["passed"] is True


def test_cli_lists_losses(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["--list-losses"])
    assert excinfo.value.code == 0
    names = capsys.readouterr().out.split()
    assert "mcxent" in names and "squared_hinge" in names


def test_cli_fails_on_impossible_tolerance(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["--loss", "l1", "--tolerance", "-1"])
    assert excinfo.value.code == 1


@pytest.mark.parametrize("kind", sorted(REGISTRY.kinds()))
def test_cli_single_loss_uses_its_natural_activation(kind, capsys):
    main(["--loss", kind])
    record = json.loads(capsys.readouterr().out)
    assert record["loss"] == kind
    assert record["activation"] == next(act for loss, act in DEFAULT_CASES if loss == kind)
    assert record["passed"] is True


def test_cli_alias_resolves_default_activation(capsys):
    main(["--loss", "ce"])
    record = json.loads(capsys.readouterr().out)
    assert record["loss"] == "mcxent" and record["activation"] == "softmax"
