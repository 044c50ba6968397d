"""
Tests for ProbeRunner: merging findings and logging probe failures.
"""

import logging

import pytest

from mcp_auditor.models import CheckStatus, ProbeFindings, SecurityCategory, SecurityCheck, Severity
from mcp_auditor.probes import Probe, ProbeOutcome
from mcp_auditor.runner import ProbeRunner


def _finding(check_id):
    return ProbeFindings(
        checks=[
            SecurityCheck(
                id=check_id,
                name=check_id,
                category=SecurityCategory.CONFIGURATION,
                status=CheckStatus.PASS,
                severity=Severity.LOW,
                description="ok",
            )
        ]
    )


class Static(Probe):
    def __init__(self, name, check_id):
        super().__init__()
        self.name = name
        self.check_id = check_id

    async def run(self, server):
        return _finding(self.check_id)


class Exploding(Probe):
    name = "exploding"

    async def run(self, server):
        raise RuntimeError("probe exploded")


class BrokenBoundary(Probe):
    name = "broken-boundary"

    async def execute(self, server):
        raise RuntimeError("escaped the boundary")


class TestProbeRunner:
    """Running all probes for one server."""

    @pytest.mark.asyncio
    async def test_merges_findings_in_probe_order(self, make_server):
        """Findings are merged in the order probes were given."""
        runner = ProbeRunner(probes=[Static("first", "a"), Static("second", "b"), Static("third", "c")])
        findings = await runner.run_all(make_server("http://mcp.test"))
        assert [c.id for c in findings.checks] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_failing_probe_is_logged_not_raised(self, make_server, caplog):
        """A failing probe is logged once and the others still count."""
        log = logging.getLogger("test.runner")
        runner = ProbeRunner(probes=[Exploding(), Static("fine", "kept")], logger=log)
        with caplog.at_level(logging.WARNING, logger="test.runner"):
            findings = await runner.run_all(make_server("http://mcp.test"))

        assert [c.id for c in findings.checks] == ["kept"]
        messages = [r.getMessage() for r in caplog.records if r.name == "test.runner"]
        assert messages == ["Security probe 0 (exploding) failed for http://mcp.test: RuntimeError: probe exploded"]

    @pytest.mark.asyncio
    async def test_settle_wraps_exceptions_outside_the_probe_boundary(self, make_server):
        """Exceptions escaping execute still become error outcomes."""
        runner = ProbeRunner(probes=[BrokenBoundary(), Static("fine", "kept")])
        outcomes = await runner.settle(make_server("http://mcp.test"))
        assert [type(o) for o in outcomes] == [ProbeOutcome, ProbeOutcome]
        assert not outcomes[0].ok
        assert outcomes[0].error == "RuntimeError: escaped the boundary"
        assert outcomes[1].ok

    @pytest.mark.asyncio
    async def test_single_probe_fault_yields_empty_findings(self, make_server):
        """A lone failing probe yields empty findings."""
        findings = await ProbeRunner(probes=[Exploding()]).run_all(make_server("http://mcp.test"))
        assert findings.empty
