"""Pipeline phases, one module per phase."""
