import pandas as pd
import pytest

from parcel_abandonment.cli import build_parser, main


@pytest.fixture
def input_csv(tmp_path, scenarios):
    rows = [
        {"parcel_id": name, "time": i, "probability": value}
        for name in ("A", "B", "D")
        for i, value in enumerate(scenarios[name])
    ]
    path = tmp_path / "probabilities.csv"
    pd.DataFrame(rows).to_csv(path, index=False)
    return path


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_run_writes_results(input_csv, tmp_path, capsys, restore_logging):
    out = tmp_path / "results"
    code = main(["run", "--input", str(input_csv), "--output", str(out), "--serial"])
    assert code == 0

    verdicts = pd.read_csv(out / "verdicts.csv").set_index("parcel_id")
    assert verdicts.loc["A", "status"] == "abandoned"
    assert verdicts.loc["B", "status"] == "not-abandoned"
    assert verdicts.loc["D", "status"] == "insufficient-data"
    assert "Abandoned:         1" in capsys.readouterr().out


def test_run_with_sustained_rule(input_csv, tmp_path, restore_logging):
    out = tmp_path / "results"
    assert main(["run", "--input", str(input_csv), "--output", str(out), "--sustained"]) == 0
    assert (out / "fitted.csv").exists()


def test_invalid_config_exit_code(input_csv, tmp_path, capsys, restore_logging):
    config = tmp_path / "config.yaml"
    config.write_text("segmentation:\n  maxSegments: 0\n")
    code = main(["run", "--input", str(input_csv), "--config", str(config)])
    assert code == 2
    assert "Configuration error" in capsys.readouterr().out


def test_inspect(input_csv, capsys, restore_logging):
    assert main(["inspect", "--input", str(input_csv)]) == 0
    out = capsys.readouterr().out
    assert "eligible" in out


def test_plot(input_csv, tmp_path, restore_logging):
    output = tmp_path / "a.png"
    assert main(["plot", "--input", str(input_csv), "--parcel", "A", "--output", str(output)]) == 0
    assert output.exists()


def test_plot_unknown_parcel(input_csv, tmp_path, restore_logging):
    output = tmp_path / "x.png"
    assert main(["plot", "--input", str(input_csv), "--parcel", "Z", "--output", str(output)]) == 1


def test_run_with_month_strings(tmp_path, scenarios, restore_logging):
    months = pd.date_range("2021-01-01", periods=24, freq="MS").strftime("%Y-%m")
    path = tmp_path / "months.csv"
    pd.DataFrame({"parcel_id": "A", "time": months, "probability": scenarios["A"]}).to_csv(path, index=False)

    out = tmp_path / "results"
    assert main(["run", "--input", str(path), "--output", str(out), "--serial"]) == 0
    verdicts = pd.read_csv(out / "verdicts.csv")
    assert verdicts.loc[0, "status"] == "abandoned"


def test_unreadable_times_exit_cleanly(tmp_path, capsys, restore_logging):
    path = tmp_path / "bad.csv"
    pd.DataFrame({"parcel_id": ["A", "A"], "time": ["one", "two"], "probability": [0.9, 0.3]}).to_csv(path, index=False)
    code = main(["inspect", "--input", str(path)])
    assert code == 1
    assert "Input error" in capsys.readouterr().out
