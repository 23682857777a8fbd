"""Per-mailbox size estimation pipeline."""

from __future__ import annotations

import logging
from contextlib import closing
from datetime import datetime
from typing import Callable, Iterable

from .config import RunConfig
from .discovery import ServiceEndpoint, resolve_endpoint
from .errors import EstimatorError, GraphRequestError
from .graph_client import GraphClient
from .models import FolderDescriptor, MailboxSizeResult, RunSummary
from .report import ResultWriter
from .utils import age_cutoff, bytes_to_megabytes

logger = logging.getLogger(__name__)

ClientFactory = Callable[[RunConfig, str, ServiceEndpoint], GraphClient]
EndpointResolver = Callable[[RunConfig, str], ServiceEndpoint]


class MailboxSizeEstimator:
    """Sum the size of archivable items for each mailbox, one mailbox at a time."""

    def __init__(
        self,
        config: RunConfig,
        client_factory: ClientFactory = GraphClient,
        endpoint_resolver: EndpointResolver = resolve_endpoint,
    ) -> None:
        self.config = config
        self.client_factory = client_factory
        self.endpoint_resolver = endpoint_resolver

    def run(
        self,
        mailboxes: Iterable[str],
        writer: ResultWriter | None = None,
        now: datetime | None = None,
    ) -> RunSummary:
        """Estimate every mailbox in order.

        A fatal condition for one mailbox is recorded as that mailbox's failed
        result and the batch continues, unless ``fail_fast`` is configured, in
        which case the error propagates and later mailboxes are not processed.
        """
        summary = RunSummary()
        cutoff = age_cutoff(self.config.age_limit_days, now)
        if cutoff:
            logger.info("Counting items created on or before %s", cutoff.isoformat())
        else:
            logger.info("No age limit set; counting all items")

        for mailbox in mailboxes:
            try:
                result = self.estimate(mailbox, cutoff, summary)
            except (KeyError, TypeError, ValueError) as exc:
                failure = GraphRequestError(f"Unexpected data from the mail service: {exc!r}")
                result = self._record_failure(mailbox, failure, summary, cause=exc)
            except EstimatorError as exc:
                result = self._record_failure(mailbox, exc, summary)
            summary.add(result)
            if writer:
                writer.write(result)
        return summary

    def _record_failure(
        self,
        mailbox: str,
        exc: EstimatorError,
        summary: RunSummary,
        cause: Exception | None = None,
    ) -> MailboxSizeResult:
        summary.record_error()
        logger.error("%s: %s", mailbox, exc)
        if self.config.fail_fast:
            if cause is not None:
                raise exc from cause
            raise exc
        return MailboxSizeResult(mailbox=mailbox, error=str(exc), exit_code=exc.exit_code)

    def estimate(
        self, mailbox: str, cutoff: datetime | None = None, summary: RunSummary | None = None
    ) -> MailboxSizeResult:
        """Compute the size of one mailbox's items created on or before ``cutoff``."""
        summary = summary or RunSummary()
        logger.info("Processing mailbox %s", mailbox)
        endpoint = self.endpoint_resolver(self.config, mailbox)
        result = MailboxSizeResult(mailbox=mailbox)
        with closing(self.client_factory(self.config, mailbox, endpoint)) as client:
            root = client.bind_root()
            for folder in client.iter_folders(root):
                result.folders += 1
                result.total_bytes += self._folder_total(client, folder, cutoff, result, summary)

        result.size_mb = bytes_to_megabytes(result.total_bytes)
        logger.info(
            "%s: %s MB in %s items across %s folders",
            mailbox,
            result.size_mb,
            result.items,
            result.folders,
        )
        return result

    def _folder_total(
        self,
        client: GraphClient,
        folder: FolderDescriptor,
        cutoff: datetime | None,
        result: MailboxSizeResult,
        summary: RunSummary,
    ) -> int:
        total = 0
        for item in client.iter_item_sizes(folder, created_before=cutoff):
            if cutoff and item.created and item.created > cutoff:
                logger.debug("Item %s created after cutoff; ignoring", item.item_id)
                continue
            if item.size is None:
                result.unreadable_items += 1
                summary.record_error()
                logger.error(
                    "Size of item %s in folder '%s' of %s could not be determined",
                    item.item_id,
                    folder.display_name,
                    result.mailbox,
                )
                continue
            result.items += 1
            total += item.size
        logger.debug("Folder '%s': %s bytes", folder.display_name, total)
        return total
