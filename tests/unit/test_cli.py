"""
Unit Tests - Command Line
"""
from pathlib import Path

import polars as pl
import pytest

from transaction_insights.main import build_parser, main
from transaction_insights.reports import DEFAULT_REPORTS, REPORTS

SAMPLE_LINES = [
    "1,2020-01-06 09:15:00 UTC,1,100,5,electronics.smartphone,samsung,300.00",
    ",2020-01-07 13:30:00 UTC,2,100,5,,,280.00",
    "2,2020-02-15 19:45:00 UTC,3,200,7,kids.toys,lego,25.50",
    ",2020-02-16 02:10:00 UTC,4,300,99,,,12.00",
    "1,2021-03-01 11:00:00 UTC,5,200,7,,lego,30.00",
    ",2021-03-02 18:20:00 UTC,8,300,99,,,9.99",
    ",1970-01-01 00:00:00 UTC,6,100,5,electronics.smartphone,samsung,310.00",
    ",1970-01-01 00:00:00 UTC,7,300,99,,,15.00",
]


@pytest.fixture
def input_csv(sample_csv):
    return sample_csv("transactions.csv", SAMPLE_LINES)


class TestCommandLine:
    """Tests for the transaction-insights entry point"""

    def test_run_exports_default_reports(self, input_csv, tmp_path):
        out = tmp_path / "reports"

        code = main(["--log-format", "text", "run", "--input", input_csv, "--output-dir", str(out)])

        assert code == 0
        exported = sorted(p.name for p in out.glob("*.csv"))
        assert exported == sorted(f"{REPORTS[n].export_name}.csv" for n in DEFAULT_REPORTS)

    def test_run_selected_reports(self, input_csv, tmp_path):
        out = tmp_path / "reports"

        code = main([
            "run", "--input", input_csv, "--output-dir", str(out),
            "--report", "user_segmentation", "--report", "overall_metrics",
        ])

        assert code == 0
        assert (out / f"{REPORTS['user_segmentation'].export_name}.csv").exists()
        overall = pl.read_csv(out / "overall_metrics.csv")
        assert overall["total_volume"][0] == len(SAMPLE_LINES)

    def test_unknown_report_fails(self, input_csv, tmp_path):
        code = main(["run", "--input", input_csv, "--output-dir", str(tmp_path), "--report", "nope"])

        assert code == 1
        assert list(tmp_path.glob("*.csv")) == [Path(input_csv)]

    def test_missing_input_fails(self, tmp_path):
        code = main(["run", "--input", str(tmp_path / "absent.csv"), "--output-dir", str(tmp_path)])

        assert code == 1

    def test_run_with_persistence(self, input_csv, tmp_path):
        out = tmp_path / "reports"
        url = f"sqlite+aiosqlite:///{tmp_path / 'insights.db'}"

        code = main([
            "run", "--input", input_csv, "--output-dir", str(out),
            "--persist", "--database-url", url, "--report", "overall_metrics",
        ])

        assert code == 0
        assert (tmp_path / "insights.db").exists()
        assert pl.read_csv(out / "overall_metrics.csv")["total_volume"][0] == len(SAMPLE_LINES)

    def test_list_reports(self, capsys):
        code = main(["reports"])

        printed = capsys.readouterr().out
        assert code == 0
        for name in REPORTS:
            assert name in printed

    def test_generate_then_run(self, tmp_path):
        raw_dir = tmp_path / "raw"
        out = tmp_path / "reports"

        assert main([
            "generate", "--output-dir", str(raw_dir),
            "--rows", "300", "--collapsed-rows", "20", "--seed", "7",
        ]) == 0

        inputs = sorted(str(p) for p in raw_dir.glob("*.csv"))
        assert [Path(p).name for p in inputs] == ["transactions_2020.csv", "transactions_2021.csv"]

        args = ["run", "--output-dir", str(out)]
        for path in inputs:
            args += ["--input", path]
        assert main(args) == 0
        assert len(list(out.glob("*.csv"))) == len(DEFAULT_REPORTS)

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])
