"""Chat attachment storage.

Uploads are checked against the configured size limit and extension
whitelist, written under the upload directory and served from ``/uploads``.
The message type of an attachment (image, audio, video or file) follows
its MIME type.
"""
