"""spendsync command-line interface."""
