"""
Core domain layer containing models, interfaces and exceptions.

This layer has no dependencies on the filesystem or network helpers and
defines the contracts the infrastructure and plugin layers implement.
"""
