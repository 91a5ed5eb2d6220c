"""Tests for upload reports and exports."""

import csv
import io
import json
from datetime import datetime

from ipl_recon.reconciliation.models import MutationStats, RowError, RowErrorKind, UploadSummary
from ipl_recon.reconciliation.report import (
    MUTATION_CSV_COLUMNS,
    ReportGenerator,
    mutations_to_csv,
    stats_to_text,
)


def make_summary(**fields) -> UploadSummary:
    defaults = dict(
        batch_id="batch_1718000000000_3f9a1c2b7",
        file_name="march.csv",
        total_transactions=5,
        processed=5,
        auto_matched=2,
        needs_review=1,
        unmatched=1,
        omitted=1,
        created_at=datetime(2024, 4, 1, 9, 30),
    )
    defaults.update(fields)
    return UploadSummary(**defaults)


class TestReportGenerator:
    """Tests for ReportGenerator."""

    def test_summary_text(self):
        text = ReportGenerator(make_summary()).to_summary_text()

        assert "BANK STATEMENT UPLOAD SUMMARY" in text
        assert "Batch ID: batch_1718000000000_3f9a1c2b7" in text
        assert "  Auto Matched: 2" in text
        assert "  Needs Review: 1" in text
        assert "Created At: 2024-04-01T09:30:00" in text
        assert "Errors" not in text

    def test_summary_text_lists_errors(self):
        summary = make_summary(errors=[
            RowError(line=7, kind=RowErrorKind.PARSE, message="Insufficient columns (minimum 6 required)"),
            RowError(kind=RowErrorKind.PROCESSING, message="Upload interrupted"),
        ])

        text = ReportGenerator(summary).to_summary_text()

        assert "Errors (2):" in text
        assert "  Line 7: Insufficient columns (minimum 6 required)" in text
        assert "  Upload interrupted" in text

    def test_json(self):
        summary = make_summary(errors=[RowError(line=8, kind=RowErrorKind.VALIDATION, message="Invalid date")])

        data = json.loads(ReportGenerator(summary).to_json())

        assert data["batch_id"] == summary.batch_id
        assert data["needs_review"] == 1
        assert data["errors"] == ["Line 8: Invalid date"]
        assert data["created_at"] == "2024-04-01T09:30:00"


class TestStatsText:

    def test_stats(self):
        stats = MutationStats(
            total_uploaded=5,
            total_matched=3,
            total_verified=2,
            total_omitted=1,
            total_amount=838543,
            last_upload=datetime(2024, 4, 1, 9, 30),
        )

        lines = stats_to_text(stats).splitlines()

        assert lines == [
            "Total Uploaded: 5",
            "Matched: 3",
            "Verified: 2",
            "Omitted: 1",
            "Total Amount: 838,543.00",
            "Last Upload: 2024-04-01T09:30:00",
        ]

    def test_never_uploaded(self):
        assert stats_to_text(MutationStats()).endswith("Last Upload: N/A")


class TestMutationsCsv:

    def test_fixed_columns_and_extra_keys_ignored(self):
        rows = [{
            "id": "m-1",
            "description": 'TRANSFER, "BUDI"',
            "amount": 300000.0,
            "state": "matched_pending",
            "upload_batch": "batch_1",
        }]

        parsed = list(csv.DictReader(io.StringIO(mutations_to_csv(rows))))

        assert list(parsed[0].keys()) == MUTATION_CSV_COLUMNS
        assert parsed[0]["description"] == 'TRANSFER, "BUDI"'
        assert parsed[0]["omit_reason"] == ""

    def test_empty_listing_has_header(self):
        assert mutations_to_csv([]).strip() == ",".join(MUTATION_CSV_COLUMNS)
