from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence

from .config import ProbeConfig
from .models import ProbeFindings, ServerRecord
from .probes import Probe, ProbeOutcome, default_probes


class ProbeRunner:
    """Runs every probe for one server concurrently and merges what they find."""

    def __init__(
        self,
        probes: Optional[Sequence[Probe]] = None,
        config: Optional[ProbeConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.probes: List[Probe] = list(probes) if probes is not None else default_probes(config)
        self.logger = logger or logging.getLogger(__name__)

    async def settle(self, server: ServerRecord) -> List[ProbeOutcome]:
        results = await asyncio.gather(*(p.execute(server) for p in self.probes), return_exceptions=True)
        outcomes: List[ProbeOutcome] = []
        for probe, result in zip(self.probes, results):
            if isinstance(result, BaseException):
                # execute() only lets cancellation-like errors through
                outcomes.append(ProbeOutcome.failure(probe.name, result))
            else:
                outcomes.append(result)
        return outcomes

    async def run_all(self, server: ServerRecord) -> ProbeFindings:
        merged = ProbeFindings()
        for index, outcome in enumerate(await self.settle(server)):
            if outcome.ok and outcome.findings is not None:
                merged.extend(outcome.findings)
            else:
                self.logger.warning(
                    "Security probe %d (%s) failed for %s: %s",
                    index,
                    outcome.probe,
                    server.endpoint,
                    outcome.error,
                )
        return merged
