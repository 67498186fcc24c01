"""Workspace controller: reconciliation, resource synthesis and dispatch.

- **builder**: Desired config map, cache claim and pods for a workspace
- **queue**: Run queue computation
- **restore**: State restore from a backup bucket
- **reconciler**: One reconciliation pass per workspace identity
- **dispatcher**: Watch-driven work queue invoking the reconciler
- **app**: Controller process (FastAPI lifespan + health API)
"""
