"""Weekly recurring schedule engine with optimistic sync to a remote store."""
