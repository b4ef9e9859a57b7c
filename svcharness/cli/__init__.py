"""SvcHarness command-line interface."""
