"""Storage-side integrity check for the formula dependency graph.

Every insert into ``metric_formula_dependencies`` is checked against the
edges already persisted: an edge ``metric -> depends_on`` is refused when
``metric`` is reachable from ``depends_on``. On PostgreSQL the migration
installs a trigger doing the same walk inside the database, which also
covers concurrent transactions.
"""

from __future__ import annotations

from sqlalchemy import event, select
from sqlalchemy.engine import Connection

from kpi_tracker.models.domain import MetricFormulaDependency


class CircularDependencyError(Exception):
    def __init__(self, metric_id: int, depends_on_metric_id: int):
        self.metric_id = metric_id
        self.depends_on_metric_id = depends_on_metric_id
        super().__init__(
            f"circular dependency detected: metric {metric_id} -> metric {depends_on_metric_id}"
        )


def reaches(connection: Connection, start_metric_id: int, target_metric_id: int) -> bool:
    """True when ``target_metric_id`` is reachable from ``start_metric_id`` over stored edges."""

    if int(start_metric_id) == int(target_metric_id):
        return True

    edges = MetricFormulaDependency.__table__
    reachable = (
        select(edges.c.depends_on_metric_id.label("metric_id"))
        .where(edges.c.metric_id == start_metric_id)
        .cte(name="reachable", recursive=True)
    )
    step = reachable.alias()
    # UNION (not UNION ALL) terminates even if a cycle slipped into storage.
    reachable = reachable.union(
        select(edges.c.depends_on_metric_id).where(edges.c.metric_id == step.c.metric_id)
    )

    row = connection.execute(
        select(reachable.c.metric_id).where(reachable.c.metric_id == target_metric_id).limit(1)
    ).first()
    return row is not None


@event.listens_for(MetricFormulaDependency, "before_insert")
def _dependency_before_insert(_mapper, connection: Connection, target: MetricFormulaDependency):
    if reaches(connection, target.depends_on_metric_id, target.metric_id):
        raise CircularDependencyError(target.metric_id, target.depends_on_metric_id)
