"""Pure domain types for the production workflow: zero I/O."""
