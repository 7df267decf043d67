from __future__ import annotations


class CrawlError(Exception):
    """Base class for every error raised by the crawl engine."""


class SourceError(CrawlError):
    """A source adapter could not produce the requested data."""


class TransientFetchError(SourceError):
    """Network failure, timeout or retryable HTTP status after retries ran out."""


class ParseError(SourceError):
    """The markup of a source no longer matches what the adapter expects."""


class PersistenceError(CrawlError):
    """A write to the dedup index failed."""


class ConcurrencyError(CrawlError):
    """A progress commit lost a compare-and-swap race."""


class BudgetExhausted(CrawlError):
    """The outbound-call budget of a run was spent before the step finished."""
