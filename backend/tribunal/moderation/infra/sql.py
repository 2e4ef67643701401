"""Small helpers for composing filtered asyncpg queries."""

from __future__ import annotations

from tribunal.moderation.domain.pagination import PageRequest


class Filters:
    """Collects ``WHERE`` fragments and numbers their placeholders.

    Fragments use ``{}`` where the positional placeholder goes, for example
    ``Filters().add("status = {}", "pending")``.
    """

    def __init__(self) -> None:
        self.clauses: list[str] = []
        self.args: list[object] = []

    def add(self, template: str, *values: object) -> "Filters":
        positions = []
        for value in values:
            self.args.append(value)
            positions.append(f"${len(self.args)}")
        self.clauses.append(template.format(*positions))
        return self

    def where(self) -> str:
        return f"WHERE {' AND '.join(self.clauses)}" if self.clauses else ""

    def page(self, page: PageRequest) -> tuple[str, list[object]]:
        """Return a ``LIMIT/OFFSET`` suffix and the args including it."""

        args = [*self.args, page.limit, page.offset]
        return f"LIMIT ${len(args) - 1} OFFSET ${len(args)}", args
