"""Core pipeline logic: batch classification, run tracking, step registry
and the step executor.

This package contains pure logic with no I/O dependencies (no database,
HTTP or spreadsheet access). Collaborators are described by the protocols
in ``logistics_core.protocol`` and supplied by the ``logistics`` package.
"""
