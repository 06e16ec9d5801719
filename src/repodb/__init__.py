"""repodb: chat persistence on top of a private GitHub repository per user.

Layout of a user's repository:
    <login>/repodb-data/
    ├── README.md                      # Baseline marker, written on first use
    ├── repodb.md                      # Manifest with directory purposes (advisory)
    ├── timeline/
    │   └── 2026-10.md                 # Monthly journal: one section per thread
    ├── threads/ messages/             # Per-file encoding (timeline.encoding = "entity_files")
    ├── agents/ workflows/ archives/   # Collection entities, <type>/<id>.md
    └── profiles/ tool_configs/

Every read re-derives structure from the files; there is no index.
"""

from repodb.core import RepoDB, UserSession
from repodb.errors import (
    AccessDenied,
    Conflict,
    EncodingError,
    NotFound,
    ProvisioningError,
    RemoteUnavailable,
    RepoDBError,
)

__all__ = [
    "AccessDenied",
    "Conflict",
    "EncodingError",
    "NotFound",
    "ProvisioningError",
    "RemoteUnavailable",
    "RepoDB",
    "RepoDBError",
    "UserSession",
]
