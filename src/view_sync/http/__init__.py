"""HTTP access to the backing store and the upstream metrics provider."""
