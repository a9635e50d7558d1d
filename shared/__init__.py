"""
Shared utilities for the Longhorn volume driver.

This package contains host-level helpers used by the driver core:
- command: run host utilities (mount, umount, mkfs) with a hard timeout
- backoff: poll a check at a fixed interval until it passes or a bound is hit
- size: parse human size strings ("10g") into byte counts
- rwlock: reader/writer lock for shared local state
- logging_config: consistent logging setup for the daemon
"""
