"""Branded types for git-checkpoints.

NewType wrappers keep sanitized names and object ids from being mixed up
with arbitrary strings in signatures.
"""

from typing import NewType

# Sanitized checkpoint name, only [a-zA-Z0-9._-]
CheckpointName = NewType("CheckpointName", str)

# Full SHA of a snapshot commit
ObjectId = NewType("ObjectId", str)
