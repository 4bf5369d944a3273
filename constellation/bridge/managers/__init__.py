"""Domain managers for the bridge.

- **workspaces**: per-project directories, file scans and writes
- **ports**: host port reservations for container port mappings
- **containers**: container create / destroy / exec through the privileged runner
- **agent**: the code-generation CLI, streamed or buffered
- **terminals**: shells on pseudo-terminals

Managers raise domain exceptions from ``constellation.bridge.errors``, never
HTTP exceptions -- that translation is the app's responsibility.
"""
