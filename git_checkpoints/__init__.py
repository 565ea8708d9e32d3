"""git-checkpoints: ephemeral, non-destructive snapshots of uncommitted work."""

__version__ = "2.1.0"

# Branded types for names and object ids
from git_checkpoints.types import CheckpointName, ObjectId

__all__ = [
    "__version__",
    "CheckpointName",
    "ObjectId",
]
