"""Bitbucket Cloud access-review connector.

Reads workspaces, projects, repositories, user groups and users from the
Bitbucket REST API, resolves who holds which entitlement on each of them,
and applies grant and revoke requests for group membership and explicit
project / repository permissions.
"""
