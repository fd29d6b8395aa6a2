"""
Command groups for the k3sctl CLI.
"""
