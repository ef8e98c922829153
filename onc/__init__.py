"""Overlay Network Controller (ONC).

Node-local controller for a weave overlay network:
 - keeps the weave router running with the expected version and config
 - connects the router to the cluster's peers
 - exposes the host on the overlay with exactly one address
 - attaches, migrates and releases container overlay addresses

Privileged weave commands run inside short-lived weaveexec containers.
"""
