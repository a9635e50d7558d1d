"""
Longhorn Driver: The Host Daemon

The driver runs on every host and provisions, attaches and tears down
Longhorn block volumes for the container platform.
Responsibilities:
- Reconcile cluster topology with the local volume cache
- Create, relocate and delete the multi-service stack backing each volume
- Wait for block devices and mount/unmount them
- Serve the Docker volume-plugin protocol and the delete webhook
"""
