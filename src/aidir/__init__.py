"""AI people directory: identity resolution, source enrichment and scoring."""

__version__ = "0.1.0"

from aidir.models import (
    FetchStatus,
    OfficialLink,
    PersonIdentity,
    PersonStatus,
    RawCandidateItem,
    SourceKind,
)

__all__ = [
    "FetchStatus",
    "OfficialLink",
    "PersonIdentity",
    "PersonStatus",
    "RawCandidateItem",
    "SourceKind",
    "__version__",
]
