"""
Repository collaborators: git queries and review posting.
"""

from .query import GitRepository, RepositoryQuery, RepositoryQueryError
from .review import GerritRestReviewer, ReviewError, ReviewPoster, parse_votes

__all__ = [
    "GerritRestReviewer",
    "GitRepository",
    "RepositoryQuery",
    "RepositoryQueryError",
    "ReviewError",
    "ReviewPoster",
    "parse_votes",
]
