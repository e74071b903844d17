"""
Posts, comments, threaded replies and reactions.

Comment pages are cached in the KV store and writes are rate limited per user.
"""
