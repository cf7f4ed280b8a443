"""Per-session state used by the recommendation exclusion policy.

A session keeps a short most-recent-first list of visited article ids; the
pipeline can exclude those ids so users are not shown articles they just read.
"""
