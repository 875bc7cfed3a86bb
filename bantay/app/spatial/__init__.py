"""Great-circle distance helpers for radius targeting."""
