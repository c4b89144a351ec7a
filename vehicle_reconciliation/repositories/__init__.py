"""Repositories wrapping every table the pipeline reads or writes."""
