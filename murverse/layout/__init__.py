
"""
Canvas layout module boundary for Murverse backend.

Design intent:
- Place fragment cards on a fixed logical grid without overlap.
- Derive card footprints from content so layout stays reproducible.
- Keep drag relocation an explicit state machine, testable without a UI.
"""
