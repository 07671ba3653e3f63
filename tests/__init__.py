"""Test suite for formflow.

This package contains tests for:
- Schema compiler (type mapping, constraints, UI layout, defaults)
- Validation adapter (required, type, format, ranges, rule order)
- Workflow state machine (transitions, guards, snapshots, submission)
- Registry and session host (lookup, execution, wire protocol)
"""
