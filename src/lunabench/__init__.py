"""lunabench: wearable device agreement analysis.

Parses vendor exports into per-second readings, aligns a device under test
against reference devices and rolls the agreement statistics up across
sessions.
"""

__version__ = "0.1.0"
