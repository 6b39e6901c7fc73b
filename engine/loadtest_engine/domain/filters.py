"""
Node filters: composable boolean predicates over fleet members.

Filters are immutable expression values (role test, all, and, or, not)
rather than closures, so they can be compared, printed in reports, built
from configuration and reused across disruption specs and checks.

Usage:
    targets = is_network_map | is_notary
    directory.select(targets)
    directory.select(~is_notary)
"""

from dataclasses import dataclass
from typing import Any

from loadtest_engine.domain.node import Node, NodeRole


class NodeFilter:
    """Base class for node filter expressions."""

    def matches(self, node: Node) -> bool:
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError

    def __call__(self, node: Node) -> bool:
        return self.matches(node)

    def and_(self, other: "NodeFilter") -> "NodeFilter":
        return AndFilter(self, other)

    def or_(self, other: "NodeFilter") -> "NodeFilter":
        return OrFilter(self, other)

    def not_(self) -> "NodeFilter":
        return NotFilter(self)

    def __and__(self, other: "NodeFilter") -> "NodeFilter":
        return self.and_(other)

    def __or__(self, other: "NodeFilter") -> "NodeFilter":
        return self.or_(other)

    def __invert__(self) -> "NodeFilter":
        return self.not_()

    def __str__(self) -> str:
        return self.describe()


@dataclass(frozen=True, slots=True)
class AllNodes(NodeFilter):
    """Holds for every node."""

    def matches(self, node: Node) -> bool:
        return True

    def describe(self) -> str:
        return "all"


@dataclass(frozen=True, slots=True)
class RoleFilter(NodeFilter):
    """Holds for nodes tagged with a role."""

    role: NodeRole

    def matches(self, node: Node) -> bool:
        return node.has_role(self.role)

    def describe(self) -> str:
        return self.role.value


@dataclass(frozen=True, slots=True)
class AndFilter(NodeFilter):
    left: NodeFilter
    right: NodeFilter

    def matches(self, node: Node) -> bool:
        return self.left.matches(node) and self.right.matches(node)

    def describe(self) -> str:
        return f"({self.left.describe()} & {self.right.describe()})"


@dataclass(frozen=True, slots=True)
class OrFilter(NodeFilter):
    left: NodeFilter
    right: NodeFilter

    def matches(self, node: Node) -> bool:
        return self.left.matches(node) or self.right.matches(node)

    def describe(self) -> str:
        return f"({self.left.describe()} | {self.right.describe()})"


@dataclass(frozen=True, slots=True)
class NotFilter(NodeFilter):
    inner: NodeFilter

    def matches(self, node: Node) -> bool:
        return not self.inner.matches(node)

    def describe(self) -> str:
        return f"~{self.inner.describe()}"


all_nodes = AllNodes()
is_network_map = RoleFilter(NodeRole.NETWORK_MAP)
is_notary = RoleFilter(NodeRole.NOTARY)
is_regular = RoleFilter(NodeRole.REGULAR)


def filter_from_config(value: Any) -> NodeFilter:
    """
    Build a filter from its configuration form.

    Accepted forms:
        "all"                       every node
        "notary" / "network_map"    a role name
        {"or": [a, b, ...]}         any of the nested filters
        {"and": [a, b, ...]}        all of the nested filters
        {"not": a}                  complement of the nested filter

    Raises:
        ValueError: If the value is not a recognised filter form
    """
    if isinstance(value, NodeFilter):
        return value

    if isinstance(value, str):
        if value == "all":
            return all_nodes
        try:
            return RoleFilter(NodeRole(value))
        except ValueError:
            raise ValueError(f"Unknown node filter: {value!r}") from None

    if isinstance(value, dict) and len(value) == 1:
        op, operand = next(iter(value.items()))
        if op == "not":
            return NotFilter(filter_from_config(operand))
        if op in ("and", "or") and isinstance(operand, list) and operand:
            parts = [filter_from_config(part) for part in operand]
            combined = parts[0]
            for part in parts[1:]:
                combined = AndFilter(combined, part) if op == "and" else OrFilter(combined, part)
            return combined

    raise ValueError(f"Invalid node filter configuration: {value!r}")
