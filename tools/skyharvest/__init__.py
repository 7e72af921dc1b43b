"""
Bluesky media harvester – archive image posts into a local folder + SQLite.

Supports:
  • Archiving every image from a user's liked posts
  • Archiving original image posts from any author's feed
  • Rate-limit backoff with a bounded retry budget
  • Resumable pagination via per-target cursor checkpoints
  • Blob-level deduplication across posts and across runs
"""
