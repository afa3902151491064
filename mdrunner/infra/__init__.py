"""
Infrastructure: configuration and logging.
"""
