"""Report generation for upload results and mutation listings."""

import csv
import io
import json
from typing import Any, Dict, Iterable

from .models import MutationStats, UploadSummary

MUTATION_CSV_COLUMNS = [
    "id",
    "transaction_date",
    "description",
    "amount",
    "transaction_type",
    "category",
    "state",
    "matched_resident_id",
    "matched_payment_id",
    "match_score",
    "matching_strategy",
    "verified_by",
    "omit_reason",
]


class ReportGenerator:
    """Generator for upload reports in various formats."""

    def __init__(self, summary: UploadSummary):
        """Initialize the report generator.

        Args:
            summary: The upload summary to generate output from.
        """
        self.summary = summary

    def to_json(self, indent: int = 2) -> str:
        """Generate JSON representation of the upload summary."""
        return json.dumps(self.summary.to_summary_dict(), indent=indent)

    def to_summary_text(self) -> str:
        """Generate a human-readable text summary of the upload.

        Returns:
            Formatted text with counters and, when present, row errors.
        """
        summary = self.summary
        lines = [
            "=" * 60,
            "BANK STATEMENT UPLOAD SUMMARY",
            "=" * 60,
            f"Batch ID: {summary.batch_id}",
            f"File: {summary.file_name or 'N/A'}",
            "",
            "Statistics:",
            f"  Total Transactions: {summary.total_transactions}",
            f"  Processed: {summary.processed}",
            f"  Auto Matched: {summary.auto_matched}",
            f"  Needs Review: {summary.needs_review}",
            f"  Unmatched: {summary.unmatched}",
            f"  Omitted: {summary.omitted}",
            f"  Historical Imports: {summary.imported_history}",
            f"  Duplicates Skipped: {summary.duplicates_skipped}",
            f"  Deleted Existing: {summary.deleted_existing}",
            "",
            f"Created At: {summary.created_at.isoformat()}",
        ]

        if summary.errors:
            lines.extend(["", f"Errors ({len(summary.errors)}):"])
            lines.extend(f"  {error}" for error in summary.errors)

        lines.append("=" * 60)
        return "\n".join(lines)


def stats_to_text(stats: MutationStats) -> str:
    """Format aggregate mutation counters for the terminal."""
    last_upload = stats.last_upload.isoformat() if stats.last_upload else "N/A"
    return "\n".join([
        f"Total Uploaded: {stats.total_uploaded}",
        f"Matched: {stats.total_matched}",
        f"Verified: {stats.total_verified}",
        f"Omitted: {stats.total_omitted}",
        f"Total Amount: {stats.total_amount:,.2f}",
        f"Last Upload: {last_upload}",
    ])


def mutations_to_csv(mutations: Iterable[Dict[str, Any]]) -> str:
    """Write mutation dictionaries as CSV with a fixed column order."""
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=MUTATION_CSV_COLUMNS, extrasaction="ignore")
    writer.writeheader()
    for mutation in mutations:
        writer.writerow(mutation)
    return output.getvalue()
