"""
Content-addressed upload fan-out.

- pinner.uploader: one upload, many storage backends (node RPC, pinning service, S3 object store).
- pinner.pinproxy: streaming extraction of pin-worthy CIDs from a node's add response.
"""

__version__ = "0.1.0"
