from typing import List, Optional, Protocol
from dataclasses import asdict, dataclass, fields
import csv
import logging
import os
import time

from ..models.opportunity import ArbitrageOpportunity, ExecutionOutcome


@dataclass(frozen=True)
class OpportunityRecord:
    timestamp: float
    pair: str
    route: str
    profit: int
    profit_percentage: float
    outcome: str
    tx_hash: Optional[str] = None

    @classmethod
    def from_opportunity(
        cls,
        opportunity: ArbitrageOpportunity,
        outcome: str,
        profit_percentage: Optional[float] = None,
        tx_hash: Optional[str] = None,
        pair: Optional[str] = None
    ) -> "OpportunityRecord":
        if pair is None:
            pair = "/".join([opportunity.token_symbol] + [t[:10] for t in opportunity.path.tokens[1:-1]])
        return cls(
            timestamp=time.time(),
            pair=pair,
            route=" -> ".join(opportunity.route),
            profit=opportunity.adjusted_profit if opportunity.adjusted_profit is not None
            else opportunity.expected_profit,
            profit_percentage=(
                opportunity.price_difference_pct if profit_percentage is None else profit_percentage
            ),
            outcome=outcome,
            tx_hash=tx_hash
        )

    @staticmethod
    def outcome_label(outcome: ExecutionOutcome) -> str:
        if outcome.success:
            return "executed"
        label = outcome.failure.value if outcome.failure else "failed"
        if outcome.revert_reason is not None:
            label = f"{label}: {outcome.revert_reason.value}"
        return label


class OpportunitySink(Protocol):
    def record(self, record: OpportunityRecord) -> None:
        ...


class LoggingOpportunitySink:
    """Writes each record as one log line."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def record(self, record: OpportunityRecord) -> None:
        self.logger.info(
            f"Opportunity {record.pair} via {record.route}: profit {record.profit} "
            f"({record.profit_percentage:.2f}%) -> {record.outcome}"
            + (f" [{record.tx_hash}]" if record.tx_hash else "")
        )


class CsvOpportunitySink:
    """Appends records to a CSV file, writing the header on first use."""

    def __init__(self, path: str):
        self.path = path
        self.logger = logging.getLogger(__name__)
        self.columns: List[str] = [f.name for f in fields(OpportunityRecord)]

    def record(self, record: OpportunityRecord) -> None:
        try:
            new_file = not os.path.exists(self.path) or os.path.getsize(self.path) == 0
            with open(self.path, "a", newline="") as f:
                writer = csv.DictWriter(f, fieldnames=self.columns)
                if new_file:
                    writer.writeheader()
                writer.writerow(asdict(record))
        except OSError as e:
            self.logger.error(f"Error writing opportunity record: {str(e)}")


class MultiSink:
    def __init__(self, *sinks: OpportunitySink):
        self.sinks = list(sinks)

    def record(self, record: OpportunityRecord) -> None:
        for sink in self.sinks:
            sink.record(record)
