"""
Unit tests for the command line entry point.

Covers flag validation, exit codes and a small end-to-end run against a
temporary SQLite file.
"""
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from vehicle_reconciliation.cli import build_request, main, render_summary
from vehicle_reconciliation.core.exceptions import DecoderTransportError, InputError
from vehicle_reconciliation.models.domain import (
    PhaseResult,
    PipelinePhase,
    RunSummary,
    VehicleInfoMode,
)

VPIC_CLIENT = "vehicle_reconciliation.pipeline.reconciliation_pipeline.VpicClient"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def database_args(tmp_path):
    return ["--database-url", f"sqlite:///{tmp_path / 'reconcile.db'}", "--init-db"]


@pytest.fixture
def hs_csv(write_csv):
    return write_csv("hs.csv", ["inventory_no", "mfr_software_no"], [("INV-1", "SW-1")])


class TestBuildRequest:
    """Test flag validation"""

    def test_csv_run_starts_at_ingest(self, tmp_path):
        request, phase = build_request(
            tmp_path / "hs.csv", None, None, None, False, False, False, False
        )

        assert phase == PipelinePhase.INGEST
        assert request.mode is None
        assert request.hardware_software_path == tmp_path / "hs.csv"

    def test_vin_mode(self, tmp_path):
        request, _ = build_request(None, tmp_path / "sv.csv", None, None, True, False, False, False)

        assert request.mode == VehicleInfoMode.VIN

    @pytest.mark.parametrize(
        "resume_vpic,resume_processing,expected",
        [
            (True, False, PipelinePhase.EXTERNAL_DECODE),
            (False, True, PipelinePhase.SYNCHRONIZE),
        ],
    )
    def test_resume_flags(self, resume_vpic, resume_processing, expected):
        _, phase = build_request(
            None, None, None, None, False, False, resume_vpic, resume_processing
        )

        assert phase == expected

    @pytest.mark.parametrize(
        "use_vin,use_spec,resume_vpic,resume_processing,with_sv,message",
        [
            (False, False, False, False, False, "Nothing to do"),
            (False, False, True, True, False, "mutually exclusive"),
            (True, True, False, False, True, "mutually exclusive"),
            (False, False, False, False, True, "--sv requires"),
            (False, False, True, False, True, "cannot be combined"),
        ],
    )
    def test_invalid_combinations(
        self, tmp_path, use_vin, use_spec, resume_vpic, resume_processing, with_sv, message
    ):
        sv = tmp_path / "sv.csv" if with_sv else None

        with pytest.raises(InputError, match=message):
            build_request(None, sv, None, None, use_vin, use_spec, resume_vpic, resume_processing)

    def test_mode_without_sv(self, tmp_path):
        with pytest.raises(InputError, match="only apply together with --sv"):
            build_request(tmp_path / "hs.csv", None, None, None, True, False, False, False)


class TestMain:
    """Test the click command"""

    def test_no_arguments(self, runner):
        result = runner.invoke(main, [])

        assert result.exit_code == 1
        assert "Nothing to do" in result.output

    def test_sv_without_mode(self, runner, write_csv):
        sv_csv = write_csv("sv.csv", ["software", "vin"], [])

        result = runner.invoke(main, ["--sv", str(sv_csv)])

        assert result.exit_code == 1
        assert "--sv requires" in result.output

    def test_missing_file_is_usage_error(self, runner, tmp_path):
        result = runner.invoke(main, ["--hs", str(tmp_path / "missing.csv")])

        assert result.exit_code == 2

    def test_hardware_only_run(self, runner, hs_csv, database_args):
        with patch(VPIC_CLIENT):
            result = runner.invoke(main, ["--hs", str(hs_csv), *database_args])

        assert result.exit_code == 0, result.output
        assert "Reconciliation complete" in result.output
        assert "inventory_inserted=1" in result.output

    def test_mixed_encoding_file_loads_decodable_rows(self, runner, tmp_path, database_args):
        hs_csv = tmp_path / "hs.csv"
        hs_csv.write_bytes(b"inventory_no,mfr_software_no\nINV1,SW1\nINV2,SW\xe92\n")

        with patch(VPIC_CLIENT):
            result = runner.invoke(main, ["--hs", str(hs_csv), *database_args])

        assert result.exit_code == 0, result.output
        assert "software_inserted=1" in result.output

    def test_non_utf8_file_reports_error(self, runner, tmp_path, database_args):
        hs_csv = tmp_path / "hs.csv"
        hs_csv.write_bytes(b"inventory_no,mfr_software_no\nINV\xe91,SW\xe91\n")

        with patch(VPIC_CLIENT):
            result = runner.invoke(main, ["--hs", str(hs_csv), *database_args])

        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "UTF-8" in result.output

    def test_resume_with_empty_store(self, runner, database_args):
        with patch(VPIC_CLIENT) as client_class:
            result = runner.invoke(main, ["--resume-vpic", *database_args])

        assert result.exit_code == 0, result.output
        client_class.return_value.decode_batch.assert_not_called()

    def test_transport_failure_suggests_resume(
        self, runner, hs_csv, write_csv, vin_factory, database_args
    ):
        sv_csv = write_csv("sv.csv", ["software", "vin"], [("SW-1", vin_factory("1HGCM82603A123456"))])

        with patch(VPIC_CLIENT) as client_class:
            client_class.return_value.decode_batch.side_effect = DecoderTransportError(
                "vPIC request failed: timeout"
            )
            result = runner.invoke(
                main, ["--hs", str(hs_csv), "--sv", str(sv_csv), "--use-vin", *database_args]
            )

        assert result.exit_code == 1
        assert "--resume-vpic" in result.output


def test_render_summary_lists_phases():
    summary = RunSummary(
        start_phase=PipelinePhase.INGEST,
        phase_results=[
            PhaseResult(
                phase=PipelinePhase.INGEST,
                success=True,
                processing_time_ms=12,
                stage_data={"inventory_inserted": 1},
                warnings=["1 vehicle records reference unknown software"],
            )
        ],
    )

    table = render_summary(summary)

    assert table.row_count == 1
    assert len(table.columns) == 4
