"""
Async Export Module

Materializes filtered job application records into downloadable files off the
request path. Tasks are persisted, admitted to a bounded worker pool, streamed
batch by batch through a format writer into staged storage, and purged after
their retention period.
"""
