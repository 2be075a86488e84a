"""
Infrastructure layer: configuration, logging, storage and network helpers.
"""
