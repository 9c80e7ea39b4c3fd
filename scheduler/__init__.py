"""Task scheduling and execution engine."""
