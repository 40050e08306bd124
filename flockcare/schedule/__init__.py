"""Rearing schedule: template, day-of-age arithmetic and materialization."""
