from sqlalchemy.dialects import postgresql


def compiled(stmt) -> str:
    """Renders a statement as PostgreSQL text with bound values inlined."""
    return str(stmt.compile(dialect=postgresql.dialect(), compile_kwargs={"literal_binds": True}))
