"""Background sweeps and their scheduling."""
