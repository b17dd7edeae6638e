"""
auth/policy.py -- Explicit per-route capability declarations.

Each FastAPI route is declared by name in a RoutePolicyRegistry: either public
(no credential needed) or protected with a set of required permission codes.
The request guard looks the matched route up here before doing anything else.

A route that was never declared is treated as protected with no permission
requirement. Forgetting a declaration therefore yields "any logged-in user",
never "anyone".

Layer rule: no imports from api/ or fastapi.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RoutePolicy:
    public: bool = False
    required_permissions: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if self.public and self.required_permissions:
            raise ValueError("A public route cannot require permissions.")


_AUTHENTICATED = RoutePolicy()


class RoutePolicyRegistry:
    """Map route name -> RoutePolicy.

    Usage:
        policies = RoutePolicyRegistry()
        policies.public("health")
        policies.require("delete_user", "users:delete")
        policies.get("delete_user").required_permissions  # frozenset({'users:delete'})
    """

    def __init__(self) -> None:
        self._policies: dict[str, RoutePolicy] = {}

    def declare(self, route_name: str, policy: RoutePolicy) -> None:
        if route_name in self._policies and self._policies[route_name] != policy:
            raise ValueError(f"Route {route_name!r} already declared with a different policy.")
        self._policies[route_name] = policy

    def public(self, *route_names: str) -> None:
        for name in route_names:
            self.declare(name, RoutePolicy(public=True))

    def require(self, route_name: str, *codes: str) -> None:
        self.declare(route_name, RoutePolicy(required_permissions=frozenset(codes)))

    def get(self, route_name: str | None) -> RoutePolicy:
        if route_name is None:
            return _AUTHENTICATED
        return self._policies.get(route_name, _AUTHENTICATED)

    def __contains__(self, route_name: str) -> bool:
        return route_name in self._policies

    def __len__(self) -> int:
        return len(self._policies)
