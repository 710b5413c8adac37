"""
Edge service: request dispatch, inbound/outbound auth, proxying, the
read-through edge cache and the change propagator that keeps it in sync.
"""
