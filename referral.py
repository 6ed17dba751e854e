import logging
import threading
from collections import deque
from typing import Iterable, Mapping, NamedTuple, Optional, Protocol

logger = logging.getLogger(__name__)

NodeId = int
Edge = tuple[NodeId, NodeId]  # (referrer, candidate)
Adjacency = Mapping[NodeId, tuple[NodeId, ...]]


class ReferralError(ValueError):
    pass


class ReachEntry(NamedTuple):
    node: NodeId
    reach: int


class CoverageEntry(NamedTuple):
    node: NodeId
    gain: int


class CentralityEntry(NamedTuple):
    node: NodeId
    score: int


# =============================================================================
# Graph Store: cached adjacency view over pull-based providers
# =============================================================================

class NodeProvider(Protocol):
    def list_nodes(self) -> Iterable[NodeId]: ...


class EdgeProvider(Protocol):
    def list_edges(self) -> Iterable[Edge]: ...


class GraphStore:
    """
    Lazily built adjacency view: node -> successors, in edge order.

    The view is rebuilt wholesale from the providers after invalidate(), never
    patched. A published view is never mutated, so a reader holding one keeps a
    consistent (possibly stale) picture even if a rebuild happens meanwhile.
    """

    def __init__(self, nodes: NodeProvider, edges: EdgeProvider):
        self._nodes = nodes
        self._edges = edges
        self._adjacency: Optional[dict[NodeId, tuple[NodeId, ...]]] = None
        self._generation = 0  # bumped by every invalidate()
        self._lock = threading.Lock()  # serializes rebuilds
        self._state_lock = threading.Lock()  # guards _adjacency / _generation swaps

    def invalidate(self) -> None:
        """Drop the cached view; next read rebuilds from the providers."""
        with self._state_lock:
            self._generation += 1
            self._adjacency = None

    def adjacency(self) -> Adjacency:
        adj = self._adjacency
        if adj is not None:
            return adj
        with self._lock:
            # another thread may have rebuilt while we waited
            with self._state_lock:
                adj = self._adjacency
                generation = self._generation
            if adj is not None:
                return adj
            adj = self._build()
            with self._state_lock:
                # an invalidate() during the build means adj may be stale: hand it
                # to this caller but don't cache it
                if self._generation == generation:
                    self._adjacency = adj
            return adj

    def successors(self, node: NodeId) -> tuple[NodeId, ...]:
        return self.adjacency().get(node, ())

    def _build(self) -> dict[NodeId, tuple[NodeId, ...]]:
        out: dict[NodeId, list[NodeId]] = {}
        for node in self._nodes.list_nodes():
            out.setdefault(node, [])
        n_edges = 0
        for referrer, candidate in self._edges.list_edges():
            out.setdefault(referrer, []).append(candidate)
            out.setdefault(candidate, [])  # endpoints not listed as users still count
            n_edges += 1
        logger.debug("rebuilt adjacency: %d nodes, %d edges", len(out), n_edges)
        return {node: tuple(succ) for node, succ in out.items()}


# =============================================================================
# Reachability (pure functions - read the view, never mutate it)
# =============================================================================

def _bfs_reach(adj: Adjacency, node: NodeId) -> set[NodeId]:
    # start from the direct successors, so node itself only shows up via a cycle
    seen: set[NodeId] = set()
    queue = deque(adj.get(node, ()))
    while queue:
        current = queue.popleft()
        if current in seen:
            continue
        seen.add(current)
        queue.extend(adj.get(current, ()))
    return seen


def reach_set(graph: GraphStore, node: NodeId) -> set[NodeId]:
    """All nodes downstream of node (direct or indirect). Unknown node -> empty."""
    return _bfs_reach(graph.adjacency(), node)


def reach_count(graph: GraphStore, node: NodeId) -> int:
    return len(reach_set(graph, node))


def top_by_reach(graph: GraphStore, k: int) -> list[ReachEntry]:
    """
    Rank users by Reach: number of distinct descendants.
    Returns top k sorted by reach descending, ties by ascending node id.
    """
    if k <= 0:
        return []
    adj = graph.adjacency()
    ranked = [ReachEntry(node, len(_bfs_reach(adj, node))) for node in adj]
    ranked.sort(key=lambda e: (-e.reach, e.node))
    return ranked[:k]


def has_path_between(graph: GraphStore, start: NodeId, target: NodeId) -> bool:
    """
    True if target is reachable from start. Reflexive: a node reaches itself.
    The collaborator uses has_path_between(candidate, referrer) to refuse
    referrer -> candidate edges that would close a cycle.
    """
    if start == target:
        return True
    adj = graph.adjacency()
    if start not in adj:
        return False
    seen = {start}
    queue = deque([start])
    while queue:
        for nxt in adj[queue.popleft()]:
            if nxt == target:
                return True
            if nxt not in seen:
                seen.add(nxt)
                queue.append(nxt)
    return False


# =============================================================================
# Unique reach: greedy maximum coverage
# =============================================================================

def unique_reach_greedy(graph: GraphStore) -> list[CoverageEntry]:
    """
    Pick users one at a time, each time the one adding the most not-yet-covered
    descendants. Standard (1 - 1/e) greedy for max coverage.

    Nodes are scanned in ascending id order and only a strictly larger gain
    replaces the current best, so ties go to the smallest id.
    Returns (node, gain) in pick order; never picks a zero-gain node.
    """
    adj = graph.adjacency()
    # reach sets computed once per call, not kept across calls
    remaining = {node: _bfs_reach(adj, node) for node in sorted(adj)}
    covered: set[NodeId] = set()
    selected: list[CoverageEntry] = []

    while remaining:
        best, best_gain = None, 0
        for node, reach in remaining.items():
            gain = len(reach - covered)
            if gain > best_gain:
                best, best_gain = node, gain
        if best is None:
            break  # nothing left adds coverage
        selected.append(CoverageEntry(best, best_gain))
        covered |= remaining.pop(best)
    return selected


# =============================================================================
# Flow centrality: "lies on some shortest path" count
# =============================================================================

def _bfs_distances(adj: Adjacency, source: NodeId) -> dict[NodeId, int]:
    """Hop counts from source; unreachable nodes are simply absent."""
    dist = {source: 0}
    queue = deque([source])
    while queue:
        current = queue.popleft()
        for nxt in adj.get(current, ()):
            if nxt not in dist:
                dist[nxt] = dist[current] + 1
                queue.append(nxt)
    return dist


def flow_centrality(graph: GraphStore) -> list[CentralityEntry]:
    """
    Rank users by Flow Centrality.
    defined as:
    number of ordered pairs (s, t), s != t, t reachable from s, for which v
    (distinct from both) satisfies dist(s, v) + dist(v, t) == dist(s, t).

    Not betweenness: v gets 1 per pair no matter how many shortest paths go
    through it. All-pairs BFS is O(V * (V + E)) and the scoring loop O(V^3),
    so this is meant for small to moderate networks.
    """
    adj = graph.adjacency()
    nodes = sorted(adj)
    distances = {s: _bfs_distances(adj, s) for s in nodes}
    score = dict.fromkeys(nodes, 0)

    for s in nodes:
        dist_s = distances[s]
        for t, d_st in dist_s.items():
            if t == s:
                continue
            for v in nodes:
                if v == s or v == t:
                    continue
                d_sv = dist_s.get(v)
                d_vt = distances[v].get(t)
                if d_sv is not None and d_vt is not None and d_sv + d_vt == d_st:
                    score[v] += 1

    ranked = [CentralityEntry(node, sc) for node, sc in score.items()]
    ranked.sort(key=lambda e: (-e.score, e.node))
    return ranked


# =============================================================================
# In-memory referral store: validates and commits mutations
# =============================================================================

class ReferralNetwork:
    """
    A directed graph where edges represent referrer → candidate relationships.
    Serves as node/edge provider for its own GraphStore (self.graph).

    Invariants:
    - No self-referrals
    - Each candidate has at most one referrer
    - Acyclic (no cycles allowed)
    """

    def __init__(self):
        self._users: dict[NodeId, None] = {}  # insertion-ordered set
        self._edges: list[Edge] = []
        self._parents: dict[NodeId, NodeId] = {}  # candidate -> referrer, o(1) in-degree check
        self.graph = GraphStore(self, self)

    def list_nodes(self) -> list[NodeId]:
        return list(self._users)

    def list_edges(self) -> list[Edge]:
        return list(self._edges)

    def add_user(self, user: NodeId) -> None:
        if user in self._users:
            return
        self._users[user] = None
        self.graph.invalidate()
        logger.info("added user %s", user)

    def candidate_has_referrer(self, candidate: NodeId) -> bool:
        return candidate in self._parents

    def _check_constraints(self, referrer: NodeId, candidate: NodeId) -> None:
        """
        Check if adding edge referrer to candidate satisfies invariants.
        Raises ReferralError if invalid.
        """
        if referrer == candidate:
            raise ReferralError("Self-referral is not allowed.")

        if self.candidate_has_referrer(candidate):
            raise ReferralError(f"{candidate} already has a referrer.")

        # If referrer is already downstream of candidate, the new edge closes a loop
        if has_path_between(self.graph, candidate, referrer):
            raise ReferralError("Adding this referral would create a cycle.")

    def add_referral(self, referrer: NodeId, candidate: NodeId) -> None:
        """Add edge referrer → candidate. Raises ReferralError if constraints violated."""
        try:
            self._check_constraints(referrer, candidate)
        except ReferralError as exc:
            logger.warning("rejected referral %s -> %s: %s", referrer, candidate, exc)
            raise
        # checks passed, commit everything then drop the cached view
        self._users.setdefault(referrer, None)
        self._users.setdefault(candidate, None)
        self._edges.append((referrer, candidate))
        self._parents[candidate] = referrer
        self.graph.invalidate()
        logger.info("added referral %s -> %s", referrer, candidate)

    def direct_referrals(self, user: NodeId) -> tuple[NodeId, ...]:
        """Return immediate children of user, empty if the user is unknown."""
        return self.graph.successors(user)
