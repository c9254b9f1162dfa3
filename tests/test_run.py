import json

import pytest

from bazi_engine import run


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("BAZI_DAY_BOUNDARY", "BAZI_TRUE_SOLAR_HOUR", "BAZI_STANDARD_TIME",
                 "BAZI_LATE_ZI_NEXT_STEM", "BAZI_SIGN_MISMATCH_DEGREES",
                 "BAZI_LUCK_PERIODS", "BAZI_CALENDAR"):
        monkeypatch.delenv(name, raising=False)


def test_cli_prints_json(capsys):
    code = run.main(["--birth", "1983-11-19 08:15", "--gender", "female",
                     "--timezone", "Europe/Moscow", "--longitude", "37.62"])
    assert code == 0
    data = json.loads(capsys.readouterr().out)
    assert data["pillars"]["year"]["chinese"] == "癸亥"
    assert data["diagnostics"]["longitude_source"] == "input"
    assert data["diagnostics"]["hour_source"] == "civil"


def test_cli_solar_hour_and_boundary_flags(capsys):
    code = run.main(["--birth", "1983-11-19 08:15", "--gender", "female",
                     "--timezone", "Europe/Moscow", "--longitude", "37.62",
                     "--solar-hour", "--day-boundary", "zi_hour", "--calendar", "ephemeris"])
    assert code == 0
    diagnostics = json.loads(capsys.readouterr().out)["diagnostics"]
    assert diagnostics["hour_source"] == "true_solar"
    assert diagnostics["day_boundary"] == "zi_hour"
    assert diagnostics["calendar_source"] == "ephemeris"


def test_cli_resolves_timezone_from_coordinates(capsys):
    code = run.main(["--birth", "1983-11-19 08:15", "--gender", "female",
                     "--latitude", "55.75", "--longitude", "37.62"])
    assert code == 0
    assert json.loads(capsys.readouterr().out)["diagnostics"]["timezone"] == "Europe/Moscow"


def test_cli_writes_output_file(tmp_path):
    target = tmp_path / "charts" / "chart.json"
    code = run.main(["--birth", "1990-03-15 10:00", "--gender", "male",
                     "--timezone", "Asia/Shanghai", "--output", str(target)])
    assert code == 0
    data = json.loads(target.read_text(encoding="utf-8"))
    assert data["pillars"]["day"]["chinese"] == "己酉"


def test_cli_reports_bad_input():
    code = run.main(["--birth", "1990-03-15 10:00", "--gender", "male", "--timezone", "Mars/Base"])
    assert code == 1


def test_cli_requires_timezone_or_coordinates():
    with pytest.raises(SystemExit) as excinfo:
        run.main(["--birth", "1990-03-15 10:00", "--gender", "male"])
    assert excinfo.value.code == 2
