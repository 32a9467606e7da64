"""Client-side analytics pipeline (consent gate, bounded queue, batched upload).

Kept free of FastAPI concerns so it can be embedded in the game client, the
local collector in `pilot_telemetry.main`, and tests.
"""
