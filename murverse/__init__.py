
"""
Murverse backend package.

Design intent:
- Host the fragment canvas service under a clean backend skeleton.
- Keep the layout engine (layout/) independent from storage and HTTP wiring.
"""
