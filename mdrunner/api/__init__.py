"""
HTTP API for the job runner.
"""
