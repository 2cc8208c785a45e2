"""Room state, realtime fan-out and expiry sweeping.

A room holds one shared text buffer, a list of uploaded files, saved text
snippets and the set of connected clients. State is memory-resident and is
lost on restart; only the uploaded blobs live on disk.
"""
