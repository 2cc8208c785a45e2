"""File upload and storage module for Air Exchange.

Blobs are written flat into the upload directory under time-prefixed names.
Which room a blob belongs to is tracked only by the room registry.
"""
