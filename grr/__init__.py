"""Gateway Route Reconciler (GRR).

Desired-state reconciliation for routing entities that own derived child
resources:
 - one gateway resource per route, created or updated idempotently
 - progressive rollout state carried across passes in gateway metadata
 - a set of placeholder backend services kept in sync with the route's targets
 - concurrent backend service refresh with fail-fast cancellation

External scheduling (work queues, retries) is left to the caller; every pass
is level-triggered and safe to repeat.
"""
