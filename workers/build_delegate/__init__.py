"""
build_delegate — Isolated delegation engine for build-time sub-projects.

Stages a sub-project outside the parent tree, builds it with a scrubbed
environment, relays its directives and removes the staged copy.
"""

__version__ = "0.1.0"
DELEGATE_VERSION = "v0"
PACKAGE_NAME = "build_delegate"
SCHEMA_VERSION = "0.1"
