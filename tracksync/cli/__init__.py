"""tracksync command line interface."""
