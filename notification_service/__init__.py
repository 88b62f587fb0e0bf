"""Notification delivery and lifecycle service.

The package is laid out in layers: ``domain`` holds entities and the error
taxonomy, ``infrastructure`` persistence and channel transports,
``application`` the dispatcher, ``interfaces`` the HTTP surface and
``client`` the consumer-side reconciliation helpers.
"""
