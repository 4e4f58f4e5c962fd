"""harreplay top-level commands."""
