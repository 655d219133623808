"""Placeholder groups for single- and multi-row INSERT statements."""


def prepare_insert_column(column_count: int) -> str:
    """``(?,?,?)`` for 3 columns; ``()`` for zero or negative counts."""
    return "(" + ",".join("?" * max(column_count, 0)) + ")"


def prepare_batch_insert_columns(row_count: int, column_count: int) -> str:
    """``(?,?),(?,?)`` for 2 rows of 2 columns; ``""`` for zero or negative rows."""
    group = prepare_insert_column(column_count)
    return ",".join([group] * max(row_count, 0))
