"""
Control plane: project administration, redeploy and the admin HTTP surface.
"""
