"""Pure domain types for the approval kernel."""
