"""Tests for the per-mailbox estimation pipeline."""

from __future__ import annotations

import io
import json
import logging
from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from archive_estimate.discovery import ServiceEndpoint
from archive_estimate.errors import DiscoveryError, ExitCode, GraphRequestError, MailboxBindError
from archive_estimate.estimator import MailboxSizeEstimator
from archive_estimate.models import FolderDescriptor, ItemSizeRecord
from archive_estimate.report import ResultWriter

NOW = datetime(2024, 6, 15, 9, 0, tzinfo=UTC)
MB = 1024 * 1024


class FakeMailbox:
    """In-memory connection: folder name -> list of (size, created)."""

    def __init__(self, folders, bind_error=False, folder_error=None):
        self.folders = folders
        self.bind_error = bind_error
        self.folder_error = folder_error
        self.cutoffs = []
        self.closed = False

    def close(self):
        self.closed = True

    def bind_root(self):
        if self.bind_error:
            raise MailboxBindError("broken@contoso.com", 404)
        return FolderDescriptor(folder_id="root", display_name="root", folder_type="")

    def iter_folders(self, root):
        if self.folder_error:
            raise self.folder_error
        for name in self.folders:
            yield FolderDescriptor(folder_id=name, display_name=name, folder_type="")

    def iter_item_sizes(self, folder, created_before=None):
        self.cutoffs.append(created_before)
        for index, (size, created) in enumerate(self.folders[folder.folder_id]):
            yield ItemSizeRecord(item_id=f"{folder.folder_id}-{index}", size=size, created=created)


def estimator_for(run_config, mailboxes, **overrides):
    config = replace(run_config, **overrides) if overrides else run_config

    def factory(config, mailbox, endpoint):
        return mailboxes[mailbox]

    def resolver(config, mailbox):
        if mailbox.startswith("nodomain"):
            raise DiscoveryError(mailbox, "address has no domain part")
        return ServiceEndpoint(host="graph.microsoft.com")

    return MailboxSizeEstimator(config, client_factory=factory, endpoint_resolver=resolver)


def old(days=30):
    return NOW - timedelta(days=days)


class TestEstimate:
    def test_empty_mailbox_is_zero(self, run_config):
        mailbox = FakeMailbox({"Inbox": [], "Sent Items": []})
        result = estimator_for(run_config, {"a@contoso.com": mailbox}).estimate("a@contoso.com")
        assert result.size_mb == 0
        assert result.total_bytes == 0
        assert result.folders == 2

    def test_sums_items_across_folders(self, run_config):
        mailbox = FakeMailbox(
            {
                "Inbox": [(MB, old())] * 3,
                "Archive": [(512 * 1024, old())] * 4,
            }
        )
        result = estimator_for(run_config, {"a@contoso.com": mailbox}).estimate("a@contoso.com")
        assert result.total_bytes == 3 * MB + 4 * 512 * 1024
        assert result.size_mb == 5
        assert result.items == 7

    def test_folder_order_does_not_change_total(self, run_config):
        folders = {"A": [(700_000, old())] * 2, "B": [(900_000, old())], "C": [(1, old())]}
        forward = FakeMailbox(folders)
        backward = FakeMailbox(dict(reversed(list(folders.items()))))
        estimator = estimator_for(run_config, {"f@x.com": forward, "b@x.com": backward})
        assert estimator.estimate("f@x.com").total_bytes == estimator.estimate("b@x.com").total_bytes

    def test_megabytes_are_floored(self, run_config):
        mailbox = FakeMailbox({"Inbox": [(2 * MB - 1, old())]})
        result = estimator_for(run_config, {"a@x.com": mailbox}).estimate("a@x.com")
        assert result.size_mb == 1

    def test_unreadable_sizes_are_logged_and_skipped(self, run_config, caplog):
        mailbox = FakeMailbox({"Inbox": [(100, old()), (None, old()), (200, old())]})
        estimator = estimator_for(run_config, {"a@x.com": mailbox})

        with caplog.at_level(logging.ERROR, logger="archive_estimate"):
            summary = estimator.run(["a@x.com"], now=NOW)

        [result] = summary.results
        assert result.total_bytes == 300
        assert result.unreadable_items == 1
        assert summary.errors == 1
        assert summary.unreadable_items == 1
        assert "Inbox-1" in caplog.text
        assert summary.exit_code == 0


class TestAgeLimit:
    def test_boundary_is_inclusive(self, run_config):
        mailbox = FakeMailbox(
            {
                "Inbox": [
                    (10, NOW - timedelta(days=14)),
                    (20, NOW - timedelta(days=13)),
                    (40, NOW - timedelta(days=100)),
                ]
            }
        )
        estimator = estimator_for(run_config, {"a@x.com": mailbox}, age_limit_days=14)
        [result] = estimator.run(["a@x.com"], now=NOW).results

        assert result.total_bytes == 50
        assert mailbox.cutoffs == [NOW - timedelta(days=14)]

    def test_zero_counts_everything_without_filter(self, run_config):
        mailbox = FakeMailbox({"Inbox": [(10, NOW), (20, old(1000))]})
        estimator = estimator_for(run_config, {"a@x.com": mailbox}, age_limit_days=0)
        [result] = estimator.run(["a@x.com"], now=NOW).results

        assert result.total_bytes == 30
        assert mailbox.cutoffs == [None]


class TestFailureBoundary:
    def mailboxes(self):
        return {
            "broken@contoso.com": FakeMailbox({}, bind_error=True),
            "fine@contoso.com": FakeMailbox({"Inbox": [(MB, old())]}),
        }

    def test_failures_are_isolated_by_default(self, run_config):
        stream = io.StringIO()
        estimator = estimator_for(run_config, self.mailboxes())

        with ResultWriter(stream) as writer:
            summary = estimator.run(["broken@contoso.com", "fine@contoso.com"], writer, now=NOW)

        records = [json.loads(line) for line in stream.getvalue().splitlines()]
        assert [r["mailbox"] for r in records] == ["broken@contoso.com", "fine@contoso.com"]
        assert records[0]["size_mb"] is None
        assert records[0]["exit_code"] == ExitCode.MAILBOX_BIND_FAILED
        assert records[1]["size_mb"] == 1
        assert summary.exit_code == ExitCode.MAILBOX_BIND_FAILED
        assert summary.errors == 1

    def test_fail_fast_stops_before_next_mailbox(self, run_config):
        stream = io.StringIO()
        estimator = estimator_for(run_config, self.mailboxes(), fail_fast=True)

        with ResultWriter(stream) as writer:
            with pytest.raises(MailboxBindError):
                estimator.run(["broken@contoso.com", "fine@contoso.com"], writer, now=NOW)

        assert stream.getvalue() == ""

    def test_discovery_failure_is_recorded(self, run_config):
        estimator = estimator_for(run_config, self.mailboxes())
        summary = estimator.run(["nodomain", "fine@contoso.com"], now=NOW)

        assert summary.results[0].exit_code == ExitCode.ENDPOINT_DISCOVERY_FAILED
        assert summary.results[1].size_mb == 1
        assert summary.exit_code == ExitCode.ENDPOINT_DISCOVERY_FAILED

    def test_unexpected_data_error_is_isolated(self, run_config):
        mailboxes = {
            "garbled@contoso.com": FakeMailbox({}, folder_error=ValueError("malformed JSON body")),
            "fine@contoso.com": FakeMailbox({"Inbox": [(MB, old())]}),
        }
        stream = io.StringIO()

        with ResultWriter(stream) as writer:
            summary = estimator_for(run_config, mailboxes).run(
                ["garbled@contoso.com", "fine@contoso.com"], writer, now=NOW
            )

        records = [json.loads(line) for line in stream.getvalue().splitlines()]
        assert [r["mailbox"] for r in records] == ["garbled@contoso.com", "fine@contoso.com"]
        assert records[0]["exit_code"] == ExitCode.SERVICE_REQUEST_FAILED
        assert "malformed JSON body" in records[0]["error"]
        assert records[1]["size_mb"] == 1
        assert summary.exit_code == ExitCode.SERVICE_REQUEST_FAILED

    def test_unexpected_data_error_with_fail_fast(self, run_config):
        mailboxes = {"garbled@contoso.com": FakeMailbox({}, folder_error=KeyError("id"))}
        estimator = estimator_for(run_config, mailboxes, fail_fast=True)

        with pytest.raises(GraphRequestError) as excinfo:
            estimator.run(["garbled@contoso.com"], now=NOW)
        assert isinstance(excinfo.value.__cause__, KeyError)


class TestConnectionLifetime:
    def test_connection_closed_after_mailbox(self, run_config):
        mailbox = FakeMailbox({"Inbox": [(10, old())]})
        estimator_for(run_config, {"a@x.com": mailbox}).estimate("a@x.com")
        assert mailbox.closed is True

    def test_connection_closed_when_mailbox_fails(self, run_config):
        broken = FakeMailbox({}, bind_error=True)
        estimator_for(run_config, {"broken@contoso.com": broken}).run(["broken@contoso.com"], now=NOW)
        assert broken.closed is True
