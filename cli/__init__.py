"""specflow command line interface."""
