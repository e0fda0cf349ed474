"""
Posting review verdicts to an asynchronous code-review system.

Gerrit runs patchset-created and draft-published after the change already
exists, so hooks cannot reject it by exiting non-zero. Instead the verdict
is posted as a review with votes, from a post-hook callback.
"""

import re
from abc import ABC, abstractmethod

import httpx
import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config.schema import GerritConfig

logger = structlog.get_logger()

__all__ = [
    "GerritRestReviewer",
    "ReviewError",
    "ReviewPoster",
    "parse_votes",
]

_VOTE_RE = re.compile(r"^([A-Za-z][\w-]*?)([+-]\d+)$")

# Transient errors worth retrying
_RETRYABLE_ERRORS = (httpx.TransportError,)


class ReviewError(Exception):
    """The review could not be posted."""

    pass


def parse_votes(spec: str) -> dict[str, int]:
    """Parse ``"Code-Review-1,Verified+1"`` into ``{"Code-Review": -1, "Verified": 1}``.

    Raises:
        ValueError: If an entry is not ``Label+N`` or ``Label-N``.
    """
    votes: dict[str, int] = {}
    for item in re.split(r"[,\s]+", spec.strip()):
        if not item:
            continue
        match = _VOTE_RE.match(item)
        if not match:
            raise ValueError(f"invalid vote '{item}'")
        votes[match.group(1)] = int(match.group(2))
    return votes


class ReviewPoster(ABC):
    """Interface for posting a review on a change."""

    @abstractmethod
    def post_review(
        self,
        change: str,
        revision: str,
        message: str,
        labels: dict[str, int],
    ) -> None:
        """Post a review message and label votes on one patchset."""

    def close(self) -> None:
        """Release any resources held by the poster."""
        pass


class GerritRestReviewer(ReviewPoster):
    """ReviewPoster using the Gerrit REST API.

    Network errors are retried a few times with exponential backoff;
    HTTP error responses are not.
    """

    def __init__(self, config: GerritConfig, retries: int = 2, client: httpx.Client | None = None) -> None:
        if not config.url:
            raise ReviewError("githooks.gerrit.url is not configured")
        self.config = config
        self.retries = retries
        self.base_url = config.url.rstrip("/")
        self.log = logger.bind(component="gerrit", url=self.base_url)
        auth = None
        if config.username and config.password:
            auth = httpx.BasicAuth(config.username, config.password)
        self.http = client or httpx.Client(auth=auth, timeout=30.0, follow_redirects=True)

    def _on_retry_sleep(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        self.log.warning(
            "gerrit.retry",
            attempt=retry_state.attempt_number,
            error=str(exc) if exc else None,
        )

    def post_review(
        self,
        change: str,
        revision: str,
        message: str,
        labels: dict[str, int],
    ) -> None:
        prefix = "/a" if self.config.username else ""
        url = f"{self.base_url}{prefix}/changes/{change}/revisions/{revision}/review"
        payload = {"message": message, "labels": labels}

        try:
            for attempt in Retrying(
                retry=retry_if_exception_type(_RETRYABLE_ERRORS),
                stop=stop_after_attempt(self.retries + 1),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                before_sleep=self._on_retry_sleep,
                reraise=True,
            ):
                with attempt:
                    response = self.http.post(url, json=payload)
                    response.raise_for_status()
        except httpx.HTTPError as e:
            raise ReviewError(f"cannot post review on change {change}: {e}") from e

        self.log.info("gerrit.review_posted", change=change, revision=revision, labels=labels)

    def close(self) -> None:
        """Close the HTTP client."""
        self.http.close()
        self.log.debug("gerrit.client_closed")

    def __enter__(self) -> "GerritRestReviewer":
        return self

    def __exit__(self, *args) -> None:
        self.close()
