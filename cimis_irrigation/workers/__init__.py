"""
Workers module for command-line entry points.

- run_once: one daily irrigation run, triggered by an external job runner
"""
