"""
Logic Rule Engine

A small forward-chaining condition/action engine:
- Stored rules matched against structured business data
- AND/OR condition logic with a fixed operator table
- Isolated, ordered dispatch of side-effecting actions
- Dry-run testing of single rules
"""

__version__ = "0.1.0"
