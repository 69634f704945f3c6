"""Channel-scoped, append-only message store with idempotent writes and keyset pagination."""
