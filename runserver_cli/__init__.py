"""Command line interface for the run-server harness."""
