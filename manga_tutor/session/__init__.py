"""Client session state package (`snapshot`)."""
