"""
Report Ledger - Hash-chained integrity trail for citizen reports.

Each report is sealed with a SHA-256 digest of its immutable content plus the
digest of the block before it. Changing a sealed report's content breaks its
own hash; deleting, inserting or reordering reports breaks a link.

The canonical content is compact JSON with the keys, in this order:

    id, type, location, description, timestamp, previousHash

timestamp is ISO-8601 UTC with milliseconds and a trailing "Z". This format
must stay byte-identical or previously stored hashes stop verifying.
"""

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from core.models import ChainStats, ChainVerification, CitizenReport

log = logging.getLogger(__name__)

GENESIS_PREVIOUS_HASH = "0"

# (canonical key, attribute name)
CANONICAL_FIELDS = (
    ("id", "id"),
    ("type", "type"),
    ("location", "location"),
    ("description", "description"),
    ("timestamp", "timestamp"),
    ("previousHash", "previous_hash"),
)


def format_timestamp(value: Any) -> Any:
    """
    Render a timestamp the way it is hashed: 2024-05-01T08:30:00.000Z.

    Naive datetimes are taken to be UTC. ISO strings are normalized the same
    way; anything else passes through untouched.
    """
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    if not isinstance(value, datetime):
        return value
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _read(report: Any, key: str, attr: str) -> Any:
    if isinstance(report, dict):
        if key in report:
            return report[key]
        return report.get(attr)
    return getattr(report, attr, None)


class ReportLedger:
    """
    Stateless single-writer hash chain over citizen reports.

    Appends must be serialized by the caller: two appends that read the same
    tail would both claim the same block number and previous hash.
    """

    def canonical_content(self, report: Any) -> str:
        """Serialize the hashed fields of a report (object or mapping)."""
        content: Dict[str, Any] = {}
        for key, attr in CANONICAL_FIELDS:
            value = _read(report, key, attr)
            if key == "timestamp":
                value = format_timestamp(value)
            elif key == "previousHash":
                value = value or GENESIS_PREVIOUS_HASH
            content[key] = value
        return json.dumps(content, separators=(",", ":"), ensure_ascii=False)

    def generate_hash(self, report: Any) -> str:
        """SHA-256 of the canonical content. Status is never included."""
        content = self.canonical_content(report)
        return hashlib.sha256(content.encode("utf-8")).hexdigest()

    def generate_signature(self, report_hash: str, timestamp: datetime) -> str:
        """Second integrity tag over hash and timestamp. Not a public-key signature."""
        data = f"{report_hash}:{format_timestamp(timestamp)}"
        return hashlib.sha256(data.encode("utf-8")).hexdigest()

    def verify_report(self, report: Any) -> bool:
        """True when the stored hash matches the recomputed one."""
        return self.generate_hash(report) == _read(report, "reportHash", "report_hash")

    def verify_chain(self, reports: Sequence[Any]) -> ChainVerification:
        """
        Check every block's hash and its link to the previous block.

        Stops at the first inconsistency and reports that block number.
        """
        ordered = _sorted_blocks(reports)

        for i, report in enumerate(ordered):
            block_number = _read(report, "blockNumber", "block_number")

            if not self.verify_report(report):
                log.warning(f"Block {block_number} failed hash verification")
                return ChainVerification(valid=False, invalid_block=block_number)

            if i > 0:
                previous = ordered[i - 1]
                expected = _read(previous, "reportHash", "report_hash")
                if _read(report, "previousHash", "previous_hash") != expected:
                    log.warning(f"Block {block_number} is not linked to block "
                                f"{_read(previous, 'blockNumber', 'block_number')}")
                    return ChainVerification(valid=False, invalid_block=block_number)

        log.debug(f"Verified chain of {len(ordered)} blocks")
        return ChainVerification(valid=True)

    def get_chain_stats(self, reports: Sequence[Any]) -> ChainStats:
        verification = self.verify_chain(reports)
        ordered = _sorted_blocks(reports)
        return ChainStats(
            total_blocks=len(ordered),
            is_valid=verification.valid,
            invalid_block=verification.invalid_block,
            genesis_hash=_read(ordered[0], "reportHash", "report_hash") if ordered else None,
            latest_hash=_read(ordered[-1], "reportHash", "report_hash") if ordered else None,
        )

    def seal(self, report: CitizenReport, tail: Optional[CitizenReport]) -> CitizenReport:
        """
        Link a new report onto the chain tail and compute its ledger fields.

        The report's id and timestamp must already be final.
        """
        if tail is None:
            report.previous_hash = GENESIS_PREVIOUS_HASH
            report.block_number = 0
        else:
            report.previous_hash = tail.report_hash
            report.block_number = tail.block_number + 1

        report.report_hash = self.generate_hash(report)
        report.signature = self.generate_signature(report.report_hash, report.timestamp)
        log.info(f"Sealed report {report.id} as block {report.block_number}")
        return report

    def inspect_chain(self, reports: Sequence[Any]) -> List[Dict[str, Any]]:
        """
        Per-block diagnostic: stored vs recalculated hash and link state.
        """
        ordered = _sorted_blocks(reports)
        rows = []

        for i, report in enumerate(ordered):
            stored = _read(report, "reportHash", "report_hash")
            calculated = self.generate_hash(report)
            row = {
                "blockNumber": _read(report, "blockNumber", "block_number"),
                "id": _read(report, "id", "id"),
                "storedHash": stored,
                "calculatedHash": calculated,
                "hashMatch": stored == calculated,
                "previousHash": _read(report, "previousHash", "previous_hash"),
                "expectedPreviousHash": None,
                "linkMatch": True,
            }
            if i > 0:
                expected = _read(ordered[i - 1], "reportHash", "report_hash")
                row["expectedPreviousHash"] = expected
                row["linkMatch"] = row["previousHash"] == expected
            rows.append(row)

        return rows


def _sorted_blocks(reports: Sequence[Any]) -> List[Any]:
    return sorted(reports, key=lambda r: _read(r, "blockNumber", "block_number") or 0)


def get_ledger() -> ReportLedger:
    """Factory function for the report ledger."""
    return ReportLedger()
