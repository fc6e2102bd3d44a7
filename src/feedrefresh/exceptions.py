"""Custom exceptions for the feedrefresh service.

This module defines all custom exception classes used throughout the
service, organized by functional area and carrying structured attributes
(feed, job and URL identifiers) so that log records can surface them.
"""


class FeedRefreshError(Exception):
    """Base class for application-specific errors."""


class ConfigLoadError(FeedRefreshError):
    """Raised when a configuration file fails to load.

    Attributes:
        config_file: Path to the configuration file that failed to load.
    """

    def __init__(
        self,
        message: str,
        config_file: str | None = None,
    ):
        super().__init__(message)
        self.config_file = config_file


class DatabaseOperationError(FeedRefreshError):
    """Raised when a database operation fails.

    Attributes:
        feed_id: The feed identifier associated with the error.
        job_id: The refresh job identifier associated with the error.
    """

    def __init__(
        self,
        message: str,
        feed_id: str | None = None,
        job_id: str | None = None,
    ):
        super().__init__(message)
        self.feed_id = feed_id
        self.job_id = job_id


class NotFoundError(DatabaseOperationError):
    """Raised when a record that was expected to exist is missing."""


class FeedNotFoundError(NotFoundError):
    """Raised when a feed is not found in the feed directory."""


class QueueBackendError(FeedRefreshError):
    """Raised when the durable queue backend cannot be initialized or reached.

    Attributes:
        backend: Name of the queue backend.
    """

    def __init__(self, message: str, backend: str | None = None):
        super().__init__(message)
        self.backend = backend


class JobStateError(FeedRefreshError):
    """Raised when a refresh job is asked to make an illegal state transition.

    Attributes:
        dedupe_key: The dedupe key of the job.
        job_id: The job identifier.
        state: The state the job was in.
    """

    def __init__(
        self,
        message: str,
        dedupe_key: str | None = None,
        job_id: int | None = None,
        state: str | None = None,
    ):
        super().__init__(message)
        self.dedupe_key = dedupe_key
        self.job_id = job_id
        self.state = state


class FeedDirectoryError(FeedRefreshError):
    """Raised when the feeds due for refresh cannot be listed."""


class FeedFetchError(FeedRefreshError):
    """Raised when fetching or parsing a feed fails.

    Attributes:
        feed_id: The feed identifier.
        url: The feed source URL.
    """

    def __init__(
        self,
        message: str,
        feed_id: str | None = None,
        url: str | None = None,
    ):
        super().__init__(message)
        self.feed_id = feed_id
        self.url = url
