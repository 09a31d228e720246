"""polymediator: adaptive query routing across relational, document and key-value stores.

Each query is classified, optionally translated, probed for data location,
and routed to the store predicted to run it fastest. Every execution feeds
a per-query performance model that sharpens later routing decisions.
"""

__version__ = "0.1.0"
