"""
Change propagation from the config store to the edge cache.

``events`` and ``publisher`` are imported by the store's change capture;
``propagator``, ``consumer`` and ``worker`` run on the consuming side.
"""
