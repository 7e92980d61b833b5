
"""
HTTP module boundary for Murverse backend.

Design intent:
- Keep API orchestration thin and typed.
- Delegate layout logic to the layout package and state to internal_core.
"""
