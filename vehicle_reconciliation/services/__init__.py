"""VIN helpers, pattern derivation, CSV input and the vPIC transport."""
