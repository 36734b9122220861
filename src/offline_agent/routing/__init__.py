"""Request classification and the local proxy front end."""

from offline_agent.routing.router import Policy, RequestRouter

__all__ = ["Policy", "RequestRouter"]
