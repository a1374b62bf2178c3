"""Tests for the JSON, CSV and Markdown exporters."""

import csv
import json

import pytest

from defender_toolkit.compliance import CONTROL_MAPPINGS, build_compliance_summary, filter_mappings
from defender_toolkit.deployers import DeploymentResult, FAIL, PASS, PLANNED
from defender_toolkit.pipeline import PipelineResult
from defender_toolkit.reporting import (
    export_compliance_csv,
    export_compliance_json,
    export_compliance_markdown,
    export_csv,
    export_json,
    export_markdown,
)
from defender_toolkit.safety.guardian import ChangeGuard


@pytest.fixture
def pipeline_result():
    guard = ChangeGuard(dry_run=True)
    guard.validate_request(
        "POST", "https://api.securitycenter.microsoft.com/api/machines/m1/tags", {"Value": "Pilot"}
    )

    endpoint = DeploymentResult("endpoint")
    endpoint.add_step("list_machines", PASS, "2 machines")
    endpoint.add_step("tag_machines", PLANNED, "Tag 'Pilot' would be added to 1 machines (1 already tagged)")
    office = DeploymentResult("office")
    office.add_step("exchange_module", FAIL, "ExchangeOnlineManagement missing | not installed")

    return PipelineResult(
        run_id="20261018_120000_abcd1234",
        products=["mde", "mdo", "xdr"],
        dry_run=True,
        results=[endpoint, office],
        not_run=["xdr"],
        audit=guard.get_audit_record(),
    )


class TestDeploymentReports:

    def test_json(self, pipeline_result, tmp_path):
        path = export_json(pipeline_result, tmp_path / "json", "Contoso", [{"service": "graph"}])
        assert path.name == "defender_deployment_20261018_120000_abcd1234.json"
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["metadata"]["mode"] == "DRY-RUN"
        assert data["tenant"] == "Contoso"
        assert data["run"]["status"] == "failed"
        assert data["run"]["deployers"][0]["steps"][1]["status"] == "planned"
        assert data["run"]["change_guard"]["planned_changes"][0]["kind"] == "http"
        assert data["api_stats"] == [{"service": "graph"}]

    def test_csv(self, pipeline_result, tmp_path):
        steps_path, summary_path = export_csv(pipeline_result, tmp_path)
        with open(steps_path, encoding="utf-8-sig", newline="") as fh:
            rows = list(csv.DictReader(fh))
        assert [r["step"] for r in rows] == ["list_machines", "tag_machines", "exchange_module"]
        assert rows[2]["status"] == "fail"

        with open(summary_path, encoding="utf-8-sig", newline="") as fh:
            summary = list(csv.reader(fh))
        assert summary[0][0] == "deployer"
        assert summary[1][:4] == ["endpoint", "True", "1", "0"]
        assert summary[-1][:2] == ["xdr", "not_run"]

    def test_markdown(self, pipeline_result, tmp_path):
        path = export_markdown(pipeline_result, tmp_path, "Contoso")
        text = path.read_text(encoding="utf-8")
        assert text.startswith("# Defender Deployment Report")
        assert "| **Mode** | DRY-RUN |" in text
        assert "| xdr | not run |" in text
        assert "## Change Guard" in text
        assert "### Planned changes" in text
        assert "ExchangeOnlineManagement missing \\| not installed" in text


class TestComplianceReports:

    def test_json(self, tmp_path):
        summary = build_compliance_summary()
        path = export_compliance_json(summary, tmp_path, "r1")
        data = json.loads(path.read_text(encoding="utf-8"))
        assert path.name == "compliance_r1.json"
        assert data["metadata"]["mode"] == "ASSESSMENT"
        assert data["compliance"]["overall"]["score"] == 77
        assert len(data["compliance"]["controls"]) == 33

    def test_csv(self, tmp_path):
        matrix_path, scores_path = export_compliance_csv(build_compliance_summary(), tmp_path, "r1")
        with open(matrix_path, encoding="utf-8-sig", newline="") as fh:
            rows = list(csv.DictReader(fh))
        assert len(rows) == 33
        assert rows[0]["product_name"] == "Defender for Endpoint"
        with open(scores_path, encoding="utf-8-sig", newline="") as fh:
            scores = list(csv.reader(fh))
        assert scores[1] == ["overall", "33", "21", "9", "3", "77"]
        assert [row[0] for row in scores[2:]] == ["iso27001", "cis", "nist"]

    def test_markdown(self, tmp_path):
        path = export_compliance_markdown(build_compliance_summary(), tmp_path, "r1", "Contoso")
        text = path.read_text(encoding="utf-8")
        assert "## Overall: 77%" in text
        assert "| **Tenant** | Contoso |" in text
        assert "| NIST CSF 2.0 | 77% |" in text
        assert "Email Authentication (DMARC/DKIM/SPF) — Non-compliant" in text
        assert "## Deployment Actions" in text
        assert "- ❌ Configure DMARC/DKIM/SPF records → `DNS provider`" in text

    def test_markdown_empty_filter(self, tmp_path):
        summary = build_compliance_summary(CONTROL_MAPPINGS, filter_mappings(CONTROL_MAPPINGS, search="zzz"))
        text = export_compliance_markdown(summary, tmp_path, "r2").read_text(encoding="utf-8")
        assert "No controls match the current filters." in text
        assert "**Tenant**" not in text
