"""PreviewGuard core conversion pipeline components.

This package contains the file-type classifier, the scan client, the
converter dispatcher and PDF builders, the upload sinks, temporary-file
bookkeeping, and the pipeline orchestrator that sequences them for a single
upload.
"""
