"""
FormDesk: multilingual form submissions over a row-oriented table.

Packages:
- store: paginated, cache-coherent record storage with dedup gating
- cache: versioned cache keys over a TTL backend
- followup: placeholder engine, document rendering, migration, actions
- observability: logging, request ids, debug events
"""

__version__ = "0.4.0"
